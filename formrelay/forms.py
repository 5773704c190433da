"""
Google Forms import / export.

Import only understands page breaks and choice questions; choice questions
are always created as RADIO and every other item kind is dropped.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from googleapiclient.discovery import build

from formrelay.config import UNTITLED, VIEWER_URL
from formrelay.errors import RemoteServiceError, ValidationError

logger = logging.getLogger(__name__)


# ---------------------------- SCHEMA

@dataclass
class FormInfo:
    title: str = UNTITLED
    document_title: str = UNTITLED


@dataclass
class ChoiceOption:
    value: Any
    go_to_section_id: Optional[str] = None


@dataclass
class PageBreakItem:
    title: Optional[str]
    page_break: dict = field(default_factory=dict)


@dataclass
class QuestionItem:
    title: Optional[str]
    options: List[ChoiceOption] = field(default_factory=list)


Item = Union[PageBreakItem, QuestionItem]


@dataclass
class FormDescriptor:
    info: FormInfo
    items: List[Item] = field(default_factory=list)
    dropped: int = 0

    @property
    def page_breaks(self) -> List[PageBreakItem]:
        return [i for i in self.items if isinstance(i, PageBreakItem)]

    @property
    def questions(self) -> List[QuestionItem]:
        return [i for i in self.items if isinstance(i, QuestionItem)]


@dataclass
class ImportResult:
    form_id: str
    link: str
    page_break_ids: Dict[str, str] = field(default_factory=dict)


def viewer_link(form_id: str) -> str:
    return VIEWER_URL.format(form_id=form_id)


def _parse_question(raw: dict) -> Optional[QuestionItem]:
    question = raw["questionItem"].get("question") if isinstance(raw["questionItem"], dict) else None
    choice = question.get("choiceQuestion") if isinstance(question, dict) else None
    if not isinstance(choice, dict):
        return None

    options = choice.get("options") or []
    if not isinstance(options, list):
        raise ValidationError("choiceQuestion.options must be a list")
    parsed = []
    for opt in options:
        if not isinstance(opt, dict):
            raise ValidationError("choice options must be objects")
        if opt.get("goToSectionId") is not None and not isinstance(opt["goToSectionId"], str):
            raise ValidationError("goToSectionId must be a string")
        parsed.append(ChoiceOption(value=opt.get("value"), go_to_section_id=opt.get("goToSectionId")))
    return QuestionItem(title=raw.get("title"), options=parsed)


def parse_descriptor(body) -> FormDescriptor:
    """
    Validate an import body and turn it into a FormDescriptor.

    { "info": {"title": "...", "documentTitle": "..."}, "items": [...] }

    ``info`` has to be an object and ``items`` a list (it may be empty).
    Unsupported items are counted in ``dropped`` and otherwise ignored.
    """
    if not isinstance(body, dict):
        raise ValidationError("form JSON must be an object")
    info = body.get("info")
    items = body.get("items")
    if not isinstance(info, dict) or not isinstance(items, list):
        raise ValidationError("form JSON needs an 'info' object and an 'items' list")

    descriptor = FormDescriptor(
        info=FormInfo(
            title=info.get("title") or UNTITLED,
            document_title=info.get("documentTitle") or UNTITLED,
        )
    )
    for raw in items:
        if not isinstance(raw, dict):
            raise ValidationError("form items must be objects")
        # an item carrying both keys shows up in both passes
        supported = False
        if raw.get("pageBreakItem") is not None:
            page_break = raw["pageBreakItem"] if isinstance(raw["pageBreakItem"], dict) else {}
            descriptor.items.append(PageBreakItem(title=raw.get("title"), page_break=page_break))
            supported = True
        if raw.get("questionItem") is not None:
            question = _parse_question(raw)
            if question is not None:
                descriptor.items.append(question)
                supported = True
        if not supported:
            descriptor.dropped += 1
    return descriptor


# ---------------------------- REQUESTS

def _create_item(item: dict, index: int) -> dict:
    return {"createItem": {"item": item, "location": {"index": index}}}


def build_requests(descriptor: FormDescriptor, page_break_ids: Dict[str, str]) -> List[dict]:
    """Ordered batchUpdate requests: all page breaks first, then the questions.

    ``goToSectionId`` is looked up in ``page_break_ids`` by section title and
    left out of the option when there is no match.
    """
    requests = []

    for page in descriptor.page_breaks:
        item = {"pageBreakItem": page.page_break}
        if page.title is not None:
            item["title"] = page.title
        requests.append(_create_item(item, len(requests)))

    for question in descriptor.questions:
        options = []
        for opt in question.options:
            option = {"value": opt.value}
            section_id = page_break_ids.get(opt.go_to_section_id) if opt.go_to_section_id else None
            if section_id is not None:
                option["goToSectionId"] = section_id
            options.append(option)

        item = {
            "questionItem": {
                "question": {"choiceQuestion": {"type": "RADIO", "options": options}},
            },
        }
        if question.title is not None:
            item["title"] = question.title
        requests.append(_create_item(item, len(requests)))

    return requests


def index_page_breaks(form: dict) -> Dict[str, str]:
    """Map page-break titles to the item ids Google assigned to them."""
    page_break_ids = {}
    for item in form.get("items", []):
        if "pageBreakItem" in item:
            page_break_ids[item.get("title")] = item.get("itemId")
    return page_break_ids


# ---------------------------- SERVICE

def build_service(credentials):
    """Forms v1 client for a ``google.oauth2.credentials.Credentials``."""
    return build("forms", "v1", credentials=credentials, cache_discovery=False)


def export_form(service, form_id: str, save_dir=None) -> dict:
    try:
        form = service.forms().get(formId=form_id).execute()
    except Exception as e:
        raise RemoteServiceError(f"could not fetch form {form_id}") from e

    if save_dir:
        out_dir = Path(save_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        title = form.get("info", {}).get("title", UNTITLED)
        safe_title = "".join(c if c.isalnum() or c in "_-" else "_" for c in title)
        output_file = out_dir / f"{safe_title}_{form_id}.json"
        with open(output_file, "w", encoding="utf-8") as f:
            json.dump(form, f, indent=4, ensure_ascii=False)
        logger.info("Saved export of %s to %s", form_id, output_file)

    return form


def import_form(service, descriptor: FormDescriptor) -> ImportResult:
    """Create a new form from ``descriptor`` and return its viewer link.

    Steps: create the shell, one batchUpdate with every item (skipped when
    there is nothing to add), then re-fetch to index the page breaks. A
    failure after the shell exists leaves it on Drive; its id is logged.
    """
    create_body = {
        "info": {
            "title": descriptor.info.title,
            "documentTitle": descriptor.info.document_title,
        }
    }
    try:
        created = service.forms().create(body=create_body).execute()
        form_id = created["formId"]
    except Exception as e:
        raise RemoteServiceError("could not create form") from e

    # Filled from the re-fetch below, after the requests are already built,
    # so section jumps in options stay unresolved.
    page_break_ids: Dict[str, str] = {}
    requests = build_requests(descriptor, page_break_ids)
    if descriptor.dropped:
        logger.info("Form %s: dropped %d unsupported items", form_id, descriptor.dropped)

    try:
        if requests:
            service.forms().batchUpdate(formId=form_id, body={"requests": requests}).execute()
        form = service.forms().get(formId=form_id).execute()
    except Exception as e:
        logger.error("Form shell %s left behind after a failed import", form_id)
        raise RemoteServiceError(f"could not populate form {form_id}") from e

    page_break_ids.update(index_page_breaks(form))
    unresolved = [
        opt.go_to_section_id
        for question in descriptor.questions
        for opt in question.options
        if opt.go_to_section_id
    ]
    if unresolved:
        logger.warning(
            "Form %s: %d option section jumps were sent unresolved (%s)",
            form_id, len(unresolved), ", ".join(sorted(set(map(str, unresolved)))),
        )

    logger.info("Imported form %s with %d items", form_id, len(requests))
    return ImportResult(form_id=form_id, link=viewer_link(form_id), page_break_ids=page_break_ids)

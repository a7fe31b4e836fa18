"""WTForms plumbing for JSON request bodies."""
from typing import Any, Dict, List, Type, TypeVar
from urllib.parse import urlparse

from flask import request
from flask_wtf import FlaskForm
from werkzeug.datastructures import ImmutableMultiDict
from wtforms.validators import StopValidation

from utils.errors import InvalidInput

FormT = TypeVar("FormT", bound=FlaskForm)


class APIForm(FlaskForm):
    """Forms fed from JSON; CSRF is enforced globally through the X-CSRFToken header."""

    class Meta:
        csrf = False


class Text:
    """Reject non-string values before length/required checks see them."""

    def __init__(self, message: str = "Must be a string.") -> None:
        self.message = message

    def __call__(self, form, field) -> None:
        if field.data is not None and not isinstance(field.data, str):
            raise StopValidation(self.message)


def request_payload() -> Dict[str, Any]:
    if request.is_json:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise InvalidInput("Request body must be a JSON object")
        return payload
    return request.form.to_dict()


def load_form(form_cls: Type[FormT], payload: Dict[str, Any] | None = None) -> FormT:
    """Build and validate ``form_cls`` from the request; raises InvalidInput with per-field errors."""
    payload = request_payload() if payload is None else payload
    scalars = {
        key: value
        for key, value in payload.items()
        if value is not None and not isinstance(value, (list, dict))
    }
    form = form_cls(formdata=ImmutableMultiDict(scalars))
    if not form.validate():
        raise InvalidInput("Please correct the highlighted fields", details={"fields": form.errors})
    return form


def string_list(payload: Dict[str, Any], key: str, *, urls: bool = False, max_items: int = 20) -> List[str]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidInput(f"{key} must be a list", details={"field": key})
    if len(value) > max_items:
        raise InvalidInput(f"{key} accepts at most {max_items} items", details={"field": key})
    items: List[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise InvalidInput(f"{key} must contain non-empty strings", details={"field": key})
        item = item.strip()
        if urls:
            parsed = urlparse(item)
            if parsed.scheme not in ("http", "https") or not parsed.netloc:
                raise InvalidInput(f"{key} must contain http(s) URLs", details={"field": key})
        if item not in items:
            items.append(item)
    return items


def strip_text(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value

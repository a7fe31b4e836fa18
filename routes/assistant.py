"""AI assistance endpoints: chat, speech-to-form and photo tagging."""
from flask import Blueprint, current_app, jsonify, request
from wtforms import StringField, TextAreaField
from wtforms.validators import DataRequired, Length, Optional

from utils import ai_gateway
from utils.analysis_service import triage_rng
from utils.errors import PermissionDenied
from utils.forms import APIForm, Text, load_form, strip_text
from utils.image_utils import read_image_upload
from utils.security import track_attempt
from utils.triage import suggest_for_report

assistant_bp = Blueprint("assistant", __name__, url_prefix="/assistant")


class ChatForm(APIForm):
    message = TextAreaField("Message", validators=[Text(), DataRequired(), Length(max=2000)], filters=[strip_text])
    context = TextAreaField("Context", validators=[Text(), Optional(), Length(max=2000)], filters=[strip_text])


class SpeechForm(APIForm):
    transcript = TextAreaField("Transcript", validators=[Text(), DataRequired(), Length(max=10000)], filters=[strip_text])


class ImageContextForm(APIForm):
    title = StringField("Title", validators=[Text(), Optional(), Length(max=255)], filters=[strip_text])
    description = TextAreaField("Description", validators=[Text(), Optional(), Length(max=5000)], filters=[strip_text])


def _throttle(bucket: str, limit: int = 60) -> None:
    if not track_attempt(f"{bucket}:{request.remote_addr}", limit=limit):
        raise PermissionDenied("Assistant limit reached. Try again later.")


@assistant_bp.route("/chat", methods=["POST"])
def chat():
    _throttle("chat")
    form = load_form(ChatForm)
    reply = ai_gateway.chat_reply(form.message.data, form.context.data or None)
    return jsonify(reply)


@assistant_bp.route("/speech-to-form", methods=["POST"])
def speech_to_form():
    _throttle("speech")
    form = load_form(SpeechForm)
    extracted = ai_gateway.speech_to_form(form.transcript.data)
    current_app.logger.info("Speech transcript extracted", extra={"source": extracted["source"]})
    return jsonify({"extracted": extracted})


@assistant_bp.route("/image-tags", methods=["POST"])
def image_tags():
    _throttle("image", limit=30)
    form = load_form(ImageContextForm, request.form.to_dict())
    max_bytes = int(current_app.config.get("MAX_IMAGE_UPLOAD_BYTES", 8 * 1024 * 1024))
    image_bytes, mime_type = read_image_upload(request.files.get("image"), max_bytes=max_bytes)
    tags = ai_gateway.tag_image(image_bytes, mime_type)
    suggestion = suggest_for_report(
        form.title.data or "",
        form.description.data or "",
        tags=tags,
        rng=triage_rng(),
    )
    return jsonify({"tags": tags, "suggestion": suggestion})

"""Route assistance for crews working around a reported obstruction."""
from flask import Blueprint, current_app, jsonify
from wtforms import StringField
from wtforms.validators import DataRequired, Length

from extensions import db
from models import OFFICIAL_ROLES, Issue
from utils import maps
from utils.decorators import roles_required
from utils.errors import InvalidInput, NotFound, UpstreamUnavailable
from utils.forms import APIForm, Text, load_form, request_payload, strip_text

routing_bp = Blueprint("routing", __name__, url_prefix="/routing")


class GeocodeForm(APIForm):
    address = StringField("Address", validators=[Text(), DataRequired(), Length(max=500)], filters=[strip_text])


def _endpoint(payload: dict, key: str):
    value = payload.get(key)
    if isinstance(value, (str, dict)) and value:
        return value
    raise InvalidInput(f"{key} is required (address or {{lat, lng}})", details={"field": key})


@routing_bp.route("/geocode", methods=["POST"])
@roles_required(*OFFICIAL_ROLES)
def geocode():
    form = load_form(GeocodeForm)
    try:
        result = maps.geocode(form.address.data)
    except UpstreamUnavailable as exc:
        current_app.logger.info("Geocoding unavailable", extra={"reason": exc.message})
        return jsonify({"result": None, "available": False, "message": "Mapping service unavailable."})
    return jsonify({"result": result, "available": True})


@routing_bp.route("/issues/<string:issue_id>/alternate-routes", methods=["POST"])
@roles_required(*OFFICIAL_ROLES)
def alternate_routes(issue_id):
    issue = db.session.get(Issue, issue_id)
    if issue is None:
        raise NotFound(f"Issue {issue_id} not found")
    payload = request_payload()
    origin = _endpoint(payload, "origin")
    destination = _endpoint(payload, "destination")

    try:
        if issue.latitude is not None and issue.longitude is not None:
            avoid = {"lat": issue.latitude, "lng": issue.longitude}
        else:
            located = maps.geocode(issue.address or "")
            if located is None:
                raise InvalidInput("Could not determine the issue location")
            avoid = {"lat": located["lat"], "lng": located["lng"]}
        routes = maps.routes_avoiding(origin, destination, avoid)
    except UpstreamUnavailable as exc:
        current_app.logger.info(
            "Route assistance unavailable", extra={"issue_id": issue.id, "reason": exc.message}
        )
        return jsonify(
            {"issue_id": issue.id, "routes": [], "available": False, "message": "Mapping service unavailable."}
        )

    message = (
        f"Found {len(routes)} alternate route(s) avoiding the reported location."
        if routes
        else "No route avoids the reported location."
    )
    return jsonify({"issue_id": issue.id, "avoid": avoid, "routes": routes, "available": True, "message": message})

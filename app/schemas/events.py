"""
Typed payloads for the append-only event log.

Each envelope carries an `entity_type` and a `schema_version`. Decoding picks
the payload model for the entity type and first runs every upgrade step from
the stored version up to the current one, so payloads written by older
releases keep parsing. Missing optional fields fall back to model defaults.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Union

from pydantic import BaseModel

from app.schemas.assessment import AssessmentRecord, AssessmentTemplate
from app.schemas.reputation import ReputationEntry
from app.schemas.returns import DamageReport, Reservation, ReturnEvent


class EntityType(str, Enum):
    ASSESSMENT_TEMPLATE = "AssessmentTemplate"
    RESERVATION = "Reservation"
    RETURN = "Return"
    DAMAGE_REPORT = "DamageReport"
    CONDITION_ASSESSMENT = "ConditionAssessment"
    REPUTATION_ENTRY = "ReputationEntry"


class Action(str, Enum):
    CREATE_ASSESSMENT_TEMPLATE = "CREATE_ASSESSMENT_TEMPLATE"
    REVISE_ASSESSMENT_TEMPLATE = "REVISE_ASSESSMENT_TEMPLATE"
    REGISTER_RESERVATION = "REGISTER_RESERVATION"
    INITIATE_RETURN = "INITIATE_RETURN"
    UPDATE_RETURN = "UPDATE_RETURN"
    REVIEW_RETURN = "REVIEW_RETURN"
    CREATE_DAMAGE_REPORT = "CREATE_DAMAGE_REPORT"
    UPDATE_DAMAGE_REPORT = "UPDATE_DAMAGE_REPORT"
    SUBMIT_CONDITION_ASSESSMENT = "SUBMIT_CONDITION_ASSESSMENT"
    APPLY_REPUTATION_CHANGE = "APPLY_REPUTATION_CHANGE"


Payload = Union[AssessmentTemplate, Reservation, ReturnEvent, DamageReport, AssessmentRecord, ReputationEntry]

PAYLOAD_MODELS: dict[EntityType, type[BaseModel]] = {
    EntityType.ASSESSMENT_TEMPLATE: AssessmentTemplate,
    EntityType.RESERVATION: Reservation,
    EntityType.RETURN: ReturnEvent,
    EntityType.DAMAGE_REPORT: DamageReport,
    EntityType.CONDITION_ASSESSMENT: AssessmentRecord,
    EntityType.REPUTATION_ENTRY: ReputationEntry,
}

CURRENT_SCHEMA_VERSION: dict[EntityType, int] = {
    EntityType.ASSESSMENT_TEMPLATE: 2,
    EntityType.RESERVATION: 1,
    EntityType.RETURN: 1,
    EntityType.DAMAGE_REPORT: 1,
    EntityType.CONDITION_ASSESSMENT: 2,
    EntityType.REPUTATION_ENTRY: 1,
}

Upgrader = Callable[[dict, str], dict]


def _camel_to_snake(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")


def _snake_keys(data: dict) -> dict:
    return {_camel_to_snake(k): v for k, v in data.items()}


# ═══════════════════════════════════════════════════════════════
# v1 → v2 upgrades
#   v1 payloads were written as camelCase JSON documents without
#   their own id; the envelope's entity_id is the id.
# ═══════════════════════════════════════════════════════════════

def _template_v1_to_v2(payload: dict, entity_id: str) -> dict:
    data = _snake_keys(payload)
    data.setdefault("id", entity_id)
    data["criteria"] = [
        {
            **_snake_keys(c),
            "options": [_snake_keys(o) for o in c.get("options", [])],
        }
        for c in data.get("criteria", [])
    ]
    return data


def _assessment_v1_to_v2(payload: dict, entity_id: str) -> dict:
    data = _snake_keys(payload)
    data.setdefault("id", entity_id)

    determined = data.get("determined_condition")
    final = data.pop("assessed_condition", None) or determined
    data["final_condition"] = final
    data.setdefault("penalty_condition", final)
    data["staff_override_condition"] = data.pop("staff_recommendation", None)

    recommendation = data.pop("penalty_recommendation", None)
    if isinstance(recommendation, dict):
        data["staff_penalty_override"] = recommendation.get("amount")
        data["penalty_override_reason"] = recommendation.get("reason")
    elif isinstance(recommendation, (int, float)):
        data["staff_penalty_override"] = recommendation

    calculated = data.get("calculated_penalty") or 0.0
    data["calculated_penalty"] = calculated
    data.setdefault("condition_penalty", calculated)
    if data.get("final_penalty") is None:
        data["final_penalty"] = calculated

    data["detailed_scores"] = [_snake_keys(s) for s in data.get("detailed_scores") or []]
    data.setdefault("assessed_by", "unknown")
    for dropped in ("item_name", "additional_images"):
        data.pop(dropped, None)
    return data


UPGRADERS: dict[tuple[EntityType, int], Upgrader] = {
    (EntityType.ASSESSMENT_TEMPLATE, 1): _template_v1_to_v2,
    (EntityType.CONDITION_ASSESSMENT, 1): _assessment_v1_to_v2,
}


def upgrade_payload(entity_type: EntityType, payload: dict, schema_version: int, entity_id: str) -> dict:
    current = CURRENT_SCHEMA_VERSION[entity_type]
    if schema_version > current:
        raise ValueError(f"{entity_type.value} payload version {schema_version} is newer than {current}")
    data = dict(payload)
    for version in range(schema_version, current):
        step = UPGRADERS.get((entity_type, version))
        if step is not None:
            data = step(data, entity_id)
    return data


def decode_payload(
    entity_type: Union[EntityType, str],
    payload: Any,
    schema_version: int = 1,
    entity_id: str = "",
) -> Payload:
    """
    Parse a stored payload into its typed model.

    Raises ValueError / pydantic.ValidationError for payloads that cannot be
    upgraded or validated; callers decide whether that is fatal.
    """
    entity_type = EntityType(entity_type)
    if not isinstance(payload, dict):
        raise ValueError(f"{entity_type.value} payload is not an object")
    data = upgrade_payload(entity_type, payload, schema_version, entity_id)
    return PAYLOAD_MODELS[entity_type].model_validate(data)


def encode_payload(model: BaseModel) -> dict:
    return model.model_dump(mode="json")

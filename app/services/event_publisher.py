"""
Kafka event publisher — fire-and-forget.

Publishes condition assessment events for downstream consumers
(inventory status, notifications, data warehouse sync).
Gracefully degrades if Kafka is unavailable.
"""
from __future__ import annotations

import json
import structlog
from app.core.config import get_settings
from app.schemas.assessment import AssessmentRecord

logger = structlog.get_logger()

_producer = None


async def _get_producer():
    global _producer
    settings = get_settings()
    if not settings.kafka_enabled:
        return None
    if _producer is None:
        from aiokafka import AIOKafkaProducer
        _producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap)
        await _producer.start()
    return _producer


async def stop_producer() -> None:
    global _producer
    if _producer is not None:
        await _producer.stop()
        _producer = None


def assessment_event(record: AssessmentRecord) -> dict:
    return {
        "event_type": "CONDITION_ASSESSMENT_SUBMITTED",
        "assessment_id": record.id,
        "return_id": record.return_id,
        "item_id": record.item_id,
        "user_id": record.user_id,
        "template_id": record.template_id,
        "template_version": record.template_version,
        "final_condition": record.final_condition.value,
        "overall_score": record.overall_score,
        "final_penalty": record.final_penalty,
        "assessed_by": record.assessed_by,
        "assessed_at": record.assessed_at.isoformat(),
    }


async def publish_assessment_event(record: AssessmentRecord) -> None:
    settings = get_settings()
    if not settings.kafka_enabled:
        return

    try:
        producer = await _get_producer()
        if producer:
            await producer.send_and_wait(
                settings.kafka_topic_assessment_events,
                json.dumps(assessment_event(record)).encode("utf-8"),
                key=record.item_id.encode("utf-8"),
            )
            logger.info("kafka_event_published", assessment_id=record.id)
    except Exception as e:
        # Fire-and-forget: log but don't fail the request
        logger.warning("kafka_publish_failed", error=str(e))

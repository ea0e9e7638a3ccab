"""Example: phone receptionist tools for a hair salon.

An in-memory salon backing the tools a receptionist needs: opening hours,
service pricing, booking, and FAQ answers through the knowledge-base
capability. Swap the dictionaries for your own database calls.

Usage:
    voicerelay run --config examples/salon_receptionist/voicerelay.yaml \
        --tools examples.salon_receptionist.tools:registry
"""

from __future__ import annotations

import asyncio
import secrets
from typing import Any

from loguru import logger

from voicerelay.tools import BackgroundTasks, KnowledgeBaseCapability, ToolRegistry

HOURS = {
    "monday": "09:00-19:00",
    "tuesday": "09:00-19:00",
    "wednesday": "09:00-19:00",
    "thursday": "09:00-20:00",
    "friday": "09:00-20:00",
    "saturday": "08:00-17:00",
    "sunday": "closed",
}

SERVICES = [
    {"name": "Women's Haircut", "category": "cut", "price": 65, "minutes": 60},
    {"name": "Men's Haircut", "category": "cut", "price": 35, "minutes": 30},
    {"name": "Full Color", "category": "color", "price": 120, "minutes": 120},
    {"name": "Balayage", "category": "color", "price": 180, "minutes": 180},
    {"name": "Deep Conditioning", "category": "treatment", "price": 40, "minutes": 30},
    {"name": "Blowout", "category": "styling", "price": 45, "minutes": 45},
]

FAQ = [
    {
        "title": "Parking",
        "text": "Free parking is available behind the salon, entrance on Elm Street.",
        "keywords": {"parking", "park", "car"},
    },
    {
        "title": "Cancellation policy",
        "text": "Please cancel at least 24 hours ahead; late cancellations are charged 50%.",
        "keywords": {"cancel", "cancellation", "late", "fee"},
    },
    {
        "title": "Walk-ins",
        "text": "Walk-ins are welcome on weekdays when a stylist is free.",
        "keywords": {"walk", "walk-in", "appointment", "without"},
    },
]

registry = ToolRegistry()
background = BackgroundTasks()


@registry.tool("getSalonHours", "Get salon business hours and days closed")
async def get_salon_hours(args: dict[str, Any]) -> dict[str, Any]:
    return {"ok": True, "hours": HOURS}


@registry.tool(
    "getServicePricing",
    "Get salon services and pricing. Use when the caller asks about prices or services offered.",
    {
        "type": "object",
        "properties": {
            "category": {"type": "string", "description": "cut, color, treatment, styling"},
            "serviceName": {"type": "string", "description": "Specific service to look up"},
        },
    },
)
async def get_service_pricing(args: dict[str, Any]) -> dict[str, Any]:
    category = str(args.get("category") or "").lower()
    name = str(args.get("serviceName") or "").lower()
    matches = [
        s
        for s in SERVICES
        if (not category or s["category"] == category) and (not name or name in s["name"].lower())
    ]
    return {"ok": True, "services": matches}


async def _send_confirmation(phone: str, code: str) -> None:
    # Stand-in for an SMS provider call.
    await asyncio.sleep(0.1)
    logger.info(f"Confirmation {code} sent to {phone}")


@registry.tool(
    "bookAppointment",
    "Book a salon appointment. Gather service, date, time, and the caller's name and phone first.",
    {
        "type": "object",
        "properties": {
            "serviceName": {"type": "string"},
            "preferredDate": {"type": "string"},
            "preferredTime": {"type": "string"},
            "customerName": {"type": "string"},
            "customerPhone": {"type": "string"},
        },
        "required": ["serviceName", "preferredDate", "preferredTime", "customerName", "customerPhone"],
    },
)
async def book_appointment(args: dict[str, Any]) -> dict[str, Any]:
    missing = [
        key
        for key in ("serviceName", "preferredDate", "preferredTime", "customerName", "customerPhone")
        if not args.get(key)
    ]
    if missing:
        return {"ok": False, "error": f"missing {', '.join(missing)}"}

    code = secrets.token_hex(3).upper()
    logger.info(f"Booked {args['serviceName']} for {args['customerName']} (call: {args.get('callId', '-')})")
    background.spawn(_send_confirmation(args["customerPhone"], code), name=f"sms-{code}")
    return {
        "ok": True,
        "confirmationCode": code,
        "service": args["serviceName"],
        "when": f"{args['preferredDate']} {args['preferredTime']}",
    }


def search_faq(question: str, language: str) -> dict[str, Any]:
    words = {w.strip("?.,!").lower() for w in question.split()}
    scored = []
    for entry in FAQ:
        overlap = len(words & entry["keywords"])
        if overlap:
            scored.append((min(1.0, 0.4 + 0.3 * overlap), entry))
    scored.sort(key=lambda item: item[0], reverse=True)
    return {
        "context": "\n".join(entry["text"] for _, entry in scored[:2]),
        "sources": [{"title": entry["title"], "score": score} for score, entry in scored[:2]],
    }


registry.register(
    "answerQuestion",
    KnowledgeBaseCapability(search_faq),
    spec={
        "description": "Answer a general question about the salon from its FAQ.",
        "input_schema": {
            "type": "object",
            "properties": {
                "question": {"type": "string"},
                "language": {"type": "string", "description": "BCP-47 code, e.g. en or es"},
            },
            "required": ["question"],
        },
    },
)

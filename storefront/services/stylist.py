"""Shopping assistant backed by the Gemini REST API.

Any failure degrades to a canned reply so the storefront chat never errors.
"""
import logging
from typing import List, Optional

import httpx
from sqlalchemy.orm import Session, selectinload

from storefront.config import get_settings
from storefront.models.products import Product, ProductStatus
from storefront.schemas.stylist import ChatTurn, StylistResponse

logger = logging.getLogger(__name__)

STORE_NAME = "All in cloth"
MAX_PRODUCTS_IN_PROMPT = 50
EMPTY_REPLY = (
    "I'm sorry, I'm having a little trouble thinking of the perfect look right now. "
    "How else can I assist you?"
)
FALLBACK_REPLY = "Our stylists are currently busy. Please try again in a moment."


def build_system_instruction(products: List[Product]) -> str:
    lines = []
    for product in products:
        category = product.categories[0].name if product.categories else "Fashion"
        lines.append(f"{product.name} ({product.base_price:.2f}) - {product.description}. Category: {category}")
    inventory = "\n".join(lines) or "No products are currently available."
    return (
        f"You are the personal stylist for '{STORE_NAME}', a luxury fashion e-commerce brand.\n"
        "Your goal is to help customers find the perfect outfit from our curated collection.\n\n"
        f"Current Inventory:\n{inventory}\n\n"
        "Guidelines:\n"
        "- Be sophisticated, helpful, and concise.\n"
        "- If a user asks for recommendations, refer specifically to our inventory.\n"
        "- Suggest matching colors or accessories for items they might like.\n"
        "- If you don't have a specific item, suggest the closest alternative from the inventory.\n"
        f"- Stay on the topic of fashion and {STORE_NAME} products."
    )


def extract_reply(body: dict) -> Optional[str]:
    if not isinstance(body, dict):
        return None
    candidates = body.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts).strip()
    return text or None


class StylistService:
    def __init__(self, db: Session, transport: Optional[httpx.BaseTransport] = None):
        self.db = db
        self.settings = get_settings()
        self._transport = transport

    def _live_products(self) -> List[Product]:
        return self.db.query(Product).options(selectinload(Product.categories)).filter(
            Product.status == ProductStatus.LIVE
        ).order_by(Product.featured.desc(), Product.created_at.desc()).limit(MAX_PRODUCTS_IN_PROMPT).all()

    def ask(self, query: str, history: List[ChatTurn]) -> StylistResponse:
        if not self.settings.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY is not set; stylist returns the fallback reply")
            return StylistResponse(reply=FALLBACK_REPLY, fallback=True)

        payload = {
            "systemInstruction": {"parts": [{"text": build_system_instruction(self._live_products())}]},
            "contents": [
                *({"role": turn.role, "parts": [{"text": turn.text}]} for turn in history),
                {"role": "user", "parts": [{"text": query}]},
            ],
            "generationConfig": {"temperature": 0.7, "topP": 0.8},
        }
        url = f"{self.settings.GEMINI_API_URL.rstrip('/')}/models/{self.settings.GEMINI_MODEL}:generateContent"

        try:
            with httpx.Client(timeout=httpx.Timeout(self.settings.HTTP_TIMEOUT_SECONDS), transport=self._transport) as client:
                response = client.post(url, params={"key": self.settings.GEMINI_API_KEY}, json=payload)
            response.raise_for_status()
            reply = extract_reply(response.json())
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Stylist request failed: {e}")
            return StylistResponse(reply=FALLBACK_REPLY, fallback=True)

        if reply is None:
            return StylistResponse(reply=EMPTY_REPLY, fallback=True)
        return StylistResponse(reply=reply)

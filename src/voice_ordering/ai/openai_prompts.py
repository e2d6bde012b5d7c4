"""Prompts e declarações de ferramentas para a OpenAI.

Responsabilidades:
- System prompt do assistente de pedidos (responde em coreano)
- Ferramentas (function calling) que mapeiam para intenções do motor
- Formatação da mensagem do usuário com o contexto da sessão
"""

from __future__ import annotations

from typing import Any

SYSTEM_PROMPT = """You are a helpful voice ordering assistant for a Korean restaurant/cafe. You help customers:

1. Search and browse products in the catalog
2. Add items to their cart with proper options
3. Apply discount coupons when available
4. Process orders for pickup or delivery

Key behaviors:
- Respond primarily in Korean, but understand English
- Be conversational, short and helpful (answers are read aloud)
- Use a function call whenever the customer asks for one of the actions above
- Only fill function arguments the customer actually said; never invent values
- If the request is not about ordering, answer briefly and steer back to the menu
"""

TOOLS: list[dict[str, Any]] = [
    {
        "type": "function",
        "function": {
            "name": "search_catalog",
            "description": "Search for products in the catalog",
            "parameters": {
                "type": "object",
                "properties": {
                    "query": {"type": "string", "description": "Search query for products"},
                    "category": {"type": "string", "description": "Product category filter"},
                },
                "required": ["query"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "add_to_cart",
            "description": "Add a product to the shopping cart",
            "parameters": {
                "type": "object",
                "properties": {
                    "productName": {"type": "string", "description": "Product name as spoken"},
                    "quantity": {"type": "integer", "description": "Quantity to add"},
                    "size": {"type": "string", "enum": ["small", "medium", "large"]},
                },
                "required": ["productName"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "apply_coupon",
            "description": "Apply a discount coupon code to the cart",
            "parameters": {
                "type": "object",
                "properties": {
                    "code": {"type": "string", "description": "Coupon code"},
                },
                "required": [],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "create_order",
            "description": "Create an order from the current cart",
            "parameters": {
                "type": "object",
                "properties": {
                    "orderType": {"type": "string", "enum": ["pickup", "delivery"]},
                    "customerName": {"type": "string"},
                    "phone": {"type": "string"},
                    "address": {"type": "string", "description": "Delivery address"},
                    "pickupLocation": {"type": "string", "description": "Store for pickup"},
                },
                "required": [],
            },
        },
    },
]


def format_user_message(text: str, context: str) -> str:
    """Mensagem do usuário com o resumo da sessão."""
    if not context:
        return text
    return f"""## Session context
{context}

## Customer said
{text}"""

# deploy_engine/artifacts/products.py
"""Short product selectors accepted in place of full product names."""

from typing import Dict

PRODUCT_ALIASES: Dict[str, str] = {
    "s": "Studio",
    "studio": "Studio",
    "se": "SalesEnterprise",
    "bcj": "BankSales_BankCustomerJourney_Lending_Marketing",
    "semse": "SalesEnterprise_Marketing_ServiceEnterprise",
}


def resolve_product_name(product: str) -> str:
    """Expand a known alias; unknown selectors are returned unchanged."""
    if not product:
        return product
    return PRODUCT_ALIASES.get(product.strip().lower(), product.strip())

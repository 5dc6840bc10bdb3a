"""Product repository - lookups used to price order line items"""

from sqlalchemy.orm import Session

from ...models import Product


class ProductRepository:
    """Repository for product database operations"""

    @staticmethod
    def get_products_by_keys(db: Session, product_keys: list[int]) -> dict[int, Product]:
        """Products keyed by product_key; unknown keys are simply absent"""
        if not product_keys:
            return {}
        products = db.query(Product).filter(Product.product_key.in_(set(product_keys))).all()
        return {p.product_key: p for p in products}

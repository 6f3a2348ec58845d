from typing import List

from sqlalchemy.orm import Session, selectinload

from storefront.core.exceptions import ConflictError, ResourceNotFoundError
from storefront.models.products import CartItem, Product, ProductStatus, ProductVariant, WishlistItem
from storefront.schemas.cart import CartLine, CartResponse, WishlistEntry

MAX_LINE_QUANTITY = 100


def _variant_image(variant: ProductVariant):
    if variant.images:
        return variant.images[0].image_url
    product_images = sorted(variant.product.images, key=lambda img: img.display_order or 0)
    return product_images[0].image_url if product_images else None


class CartService:
    def __init__(self, db: Session):
        self.db = db

    def _get_variant(self, variant_id: int) -> ProductVariant:
        variant = self.db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()
        if not variant or not variant.is_active or variant.product.status != ProductStatus.LIVE:
            raise ResourceNotFoundError("Variant", variant_id)
        return variant

    def _check_stock(self, variant: ProductVariant, quantity: int) -> None:
        available = variant.inventory.available_stock if variant.inventory else 0
        if quantity > available:
            raise ConflictError(f"Only {max(available, 0)} left in stock for {variant.sku}")

    def get_cart(self, user_id: int) -> CartResponse:
        items = self.db.query(CartItem).options(
            selectinload(CartItem.variant).selectinload(ProductVariant.inventory),
            selectinload(CartItem.variant).selectinload(ProductVariant.images),
        ).filter(CartItem.user_id == user_id).order_by(CartItem.created_at, CartItem.id).all()

        lines = []
        for item in items:
            variant = item.variant
            price = variant.effective_price
            lines.append(CartLine(
                variant_id=variant.id,
                product_id=variant.product_id,
                product_name=variant.product.name,
                sku=variant.sku,
                color=variant.color,
                size=variant.size,
                image=_variant_image(variant),
                price=price,
                quantity=item.quantity,
                line_total=round(price * item.quantity, 2),
                available_stock=variant.inventory.available_stock if variant.inventory else 0,
            ))
        return CartResponse(
            items=lines,
            item_count=sum(line.quantity for line in lines),
            subtotal=round(sum(line.line_total for line in lines), 2),
        )

    def add_item(self, user_id: int, variant_id: int, quantity: int) -> CartResponse:
        """Add to the cart, merging with an existing line for the same variant."""
        variant = self._get_variant(variant_id)
        item = self.db.query(CartItem).filter(
            CartItem.user_id == user_id, CartItem.variant_id == variant_id
        ).first()
        new_quantity = min(MAX_LINE_QUANTITY, (item.quantity if item else 0) + quantity)
        self._check_stock(variant, new_quantity)
        if item:
            item.quantity = new_quantity
        else:
            self.db.add(CartItem(user_id=user_id, variant_id=variant_id, quantity=new_quantity))
        self.db.commit()
        return self.get_cart(user_id)

    def update_item(self, user_id: int, variant_id: int, quantity: int) -> CartResponse:
        item = self.db.query(CartItem).filter(
            CartItem.user_id == user_id, CartItem.variant_id == variant_id
        ).first()
        if not item:
            raise ResourceNotFoundError("Cart item", variant_id)
        self._check_stock(item.variant, quantity)
        item.quantity = quantity
        self.db.commit()
        return self.get_cart(user_id)

    def remove_item(self, user_id: int, variant_id: int) -> CartResponse:
        deleted = self.db.query(CartItem).filter(
            CartItem.user_id == user_id, CartItem.variant_id == variant_id
        ).delete(synchronize_session=False)
        if not deleted:
            raise ResourceNotFoundError("Cart item", variant_id)
        self.db.commit()
        return self.get_cart(user_id)


class WishlistService:
    def __init__(self, db: Session):
        self.db = db

    def list_items(self, user_id: int) -> List[WishlistEntry]:
        items = self.db.query(WishlistItem).options(
            selectinload(WishlistItem.product).selectinload(Product.images)
        ).filter(WishlistItem.user_id == user_id).order_by(WishlistItem.created_at.desc()).all()
        entries = []
        for item in items:
            images = sorted(item.product.images, key=lambda img: img.display_order or 0)
            entries.append(WishlistEntry(
                product_id=item.product_id,
                name=item.product.name,
                base_price=item.product.base_price,
                image=images[0].image_url if images else None,
                added_at=item.created_at,
            ))
        return entries

    def add_item(self, user_id: int, product_id: int) -> List[WishlistEntry]:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise ResourceNotFoundError("Product", product_id)
        exists = self.db.query(WishlistItem.id).filter(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        ).first()
        if not exists:
            self.db.add(WishlistItem(user_id=user_id, product_id=product_id))
            self.db.commit()
        return self.list_items(user_id)

    def remove_item(self, user_id: int, product_id: int) -> List[WishlistEntry]:
        deleted = self.db.query(WishlistItem).filter(
            WishlistItem.user_id == user_id, WishlistItem.product_id == product_id
        ).delete(synchronize_session=False)
        if not deleted:
            raise ResourceNotFoundError("Wishlist item", product_id)
        self.db.commit()
        return self.list_items(user_id)

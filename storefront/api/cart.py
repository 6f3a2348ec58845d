from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.users import User
from storefront.schemas.cart import CartItemAdd, CartItemUpdate, WishlistAdd
from storefront.services.cart import CartService, WishlistService

cart_router = APIRouter()
wishlist_router = APIRouter()

@cart_router.get("")
def get_cart(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return success_response(CartService(db).get_cart(current_user.id))

@cart_router.post("", status_code=status.HTTP_201_CREATED)
def add_to_cart(item: CartItemAdd, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Add a variant to the cart; an existing line for it has its quantity increased."""
    return success_response(CartService(db).add_item(current_user.id, item.variant_id, item.quantity))

@cart_router.patch("/{variant_id}")
def update_cart_item(
    variant_id: int,
    item: CartItemUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return success_response(CartService(db).update_item(current_user.id, variant_id, item.quantity))

@cart_router.delete("/{variant_id}")
def remove_cart_item(variant_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return success_response(CartService(db).remove_item(current_user.id, variant_id))

@wishlist_router.get("")
def get_wishlist(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return success_response(WishlistService(db).list_items(current_user.id))

@wishlist_router.post("", status_code=status.HTTP_201_CREATED)
def add_to_wishlist(item: WishlistAdd, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return success_response(WishlistService(db).add_item(current_user.id, item.product_id))

@wishlist_router.delete("/{product_id}")
def remove_from_wishlist(product_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return success_response(WishlistService(db).remove_item(current_user.id, product_id))

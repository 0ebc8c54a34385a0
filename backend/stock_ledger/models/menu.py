"""Menu models needed to resolve order lines into stock consumption."""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stock_ledger.db.base import Base, TimestampMixin
from stock_ledger.models.validators import non_negative, positive

if TYPE_CHECKING:
    from stock_ledger.models.stock import StockItem


class MenuItem(Base, TimestampMixin):
    """Menu item with its recipe (bill of materials)."""

    __tablename__ = "menu_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False)  # Starters, Mains, Desserts, Drinks
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    track_stock: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    recipe: Mapped[list["RecipeItem"]] = relationship(
        "RecipeItem", back_populates="menu_item", cascade="all, delete-orphan"
    )

    @validates("price")
    def _validate_price(self, key, value):
        return non_negative(key, value)


class RecipeItem(Base):
    """Quantity of one stock item consumed per unit of a menu item."""

    __tablename__ = "recipe_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    menu_item_id: Mapped[int] = mapped_column(
        ForeignKey("menu_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    stock_item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)  # None = stock item's unit

    # Relationships
    menu_item: Mapped["MenuItem"] = relationship("MenuItem", back_populates="recipe")
    stock_item: Mapped["StockItem"] = relationship("StockItem")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        return positive(key, value)


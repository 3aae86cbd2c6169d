# vehiclesearch/models.py
"""SQLAlchemy ORM models for the listing record store.

These mirror the tables owned by the marketplace CRUD layer. The search core
reads them to build index documents and never writes to them.
"""
import uuid

from sqlalchemy import (
    Column, Integer, Text, String, Numeric, Float, Boolean, TIMESTAMP,
    ForeignKey, func, Index,
)
from sqlalchemy.orm import relationship
from .db import Base

ELIGIBLE_STATUS = "ACTIVE"
LISTING_STATUSES = ("DRAFT", "PENDING", "ACTIVE", "SOLD", "REJECTED", "EXPIRED")
CONDITIONS = ("NEW", "USED", "REFURBISHED")


def _new_id():
    return uuid.uuid4().hex


class Category(Base):
    __tablename__ = "categories"
    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(Text, nullable=False)
    slug = Column(Text, nullable=False, unique=True, index=True)
    position = Column(Integer, default=0)

    listings = relationship("Listing", back_populates="category")


class Seller(Base):
    __tablename__ = "sellers"
    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(Text, nullable=False)
    company_name = Column(Text)
    city = Column(Text)
    country = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())

    listings = relationship("Listing", back_populates="seller")


class Listing(Base):
    __tablename__ = "listings"
    id = Column(String(32), primary_key=True, default=_new_id)
    title = Column(Text, nullable=False)
    slug = Column(Text, unique=True, index=True)
    description = Column(Text)

    # vehicle details
    brand = Column(Text)
    model = Column(Text)
    year = Column(Integer)
    mileage = Column(Integer)
    fuel_type = Column(Text)
    transmission = Column(Text)
    power = Column(Text)
    emission_class = Column(Text)
    axles = Column(Integer)
    weight = Column(Numeric)
    color = Column(Text)
    vin = Column(Text)

    # commercial
    price = Column(Numeric)
    currency = Column(Text, default="EUR")
    condition = Column(Text, default="USED")
    status = Column(Text, nullable=False, default="DRAFT", index=True)
    is_featured = Column(Boolean, default=False)
    views = Column(Integer, default=0)

    # location
    city = Column(Text)
    country = Column(Text)
    latitude = Column(Float)
    longitude = Column(Float)

    category_id = Column(String(32), ForeignKey("categories.id"), index=True)
    seller_id = Column(String(32), ForeignKey("sellers.id"), index=True)

    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

    category = relationship("Category", back_populates="listings")
    seller = relationship("Seller", back_populates="listings")
    images = relationship(
        "ListingImage", order_by="ListingImage.position",
        back_populates="listing", cascade="all, delete-orphan",
    )
    specifications = relationship(
        "ListingSpecification", back_populates="listing", cascade="all, delete-orphan",
    )


class ListingImage(Base):
    __tablename__ = "listing_images"
    id = Column(Integer, primary_key=True, autoincrement=True)
    listing_id = Column(String(32), ForeignKey("listings.id"), nullable=False, index=True)
    url = Column(Text, nullable=False)
    thumbnail_url = Column(Text)
    position = Column(Integer, default=0)

    listing = relationship("Listing", back_populates="images")


class ListingSpecification(Base):
    __tablename__ = "listing_specifications"
    id = Column(Integer, primary_key=True, autoincrement=True)
    listing_id = Column(String(32), ForeignKey("listings.id"), nullable=False, index=True)
    key = Column(Text, nullable=False)
    value = Column(Text)

    listing = relationship("Listing", back_populates="specifications")

Index("idx_listings_status_created", Listing.status, Listing.created_at)

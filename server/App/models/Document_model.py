import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import Column, String, DateTime, Table, text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship
from Config.DB.db import Base


# Documents are scoped to products; chatbots see the documents of the products
# they are linked to.
product_documents = Table(
    "product_documents",
    Base.metadata,
    Column("product_id", ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("document_id", ForeignKey("documents.id", ondelete="CASCADE"), primary_key=True),
)

chatbot_products = Table(
    "chatbot_products",
    Base.metadata,
    Column("chatbot_id", String(64), primary_key=True),
    Column("product_id", ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
)


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    documents: Mapped[List["Document"]] = relationship(
        "Document", secondary=product_documents, back_populates="products"
    )


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True, 
        default=uuid.uuid4, 
        server_default=text("gen_random_uuid()")
    )
    
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(100), nullable=False, default="text/plain")
    # Primary owning product; additional products are linked via product_documents
    product_id: Mapped[str] = mapped_column(
        ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True
    )
    
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), 
        default=lambda: datetime.now(timezone.utc),
        server_default=text("now()")
    )

    products: Mapped[List["Product"]] = relationship(
        "Product", secondary=product_documents, back_populates="documents"
    )

    def __repr__(self) -> str:
        return f"<Document(name={self.name!r}, product_id={self.product_id}, content_type={self.content_type})>"

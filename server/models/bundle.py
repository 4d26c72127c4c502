from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, Numeric, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from server.db.base_class import Base


class Bundle(Base):
    __tablename__ = "bundles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    description = Column(Text, nullable=True)
    image = Column(Text, nullable=True)
    exclusive = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Дочерние медиа принадлежат бандлу и удаляются вместе с ним
    images = relationship(
        "BundleImage",
        back_populates="bundle",
        cascade="all, delete-orphan",
        order_by="BundleImage.position",
    )
    videos = relationship(
        "BundleVideo",
        back_populates="bundle",
        cascade="all, delete-orphan",
        order_by="BundleVideo.position",
    )


class BundleImage(Base):
    __tablename__ = "bundle_images"

    id = Column(Integer, primary_key=True, index=True)
    bundle_id = Column(Integer, ForeignKey("bundles.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(Text, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    bundle = relationship("Bundle", back_populates="images")


class BundleVideo(Base):
    __tablename__ = "bundle_videos"

    id = Column(Integer, primary_key=True, index=True)
    bundle_id = Column(Integer, ForeignKey("bundles.id", ondelete="CASCADE"), nullable=False, index=True)
    url = Column(Text, nullable=False)
    position = Column(Integer, default=0, nullable=False)

    bundle = relationship("Bundle", back_populates="videos")

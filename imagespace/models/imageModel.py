from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from .database import Base, utcnow

SOURCE_UPLOAD = "upload"
SOURCE_GENERATE = "generate"


class Image(Base):
    __tablename__ = "images"

    id = Column(Integer, primary_key=True, index=True)
    workspace_id = Column(
        Integer, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name = Column(String(512), nullable=False)
    object_path = Column(String(1024), nullable=False, unique=True, index=True)
    object_url = Column(String(2048), nullable=False)
    thumbnail_path = Column(String(1024), nullable=False, default="")
    thumbnail_url = Column(String(2048), nullable=False, default="")
    size = Column(BigInteger, nullable=False, default=0)
    mime_type = Column(String(128), nullable=False, default="")
    source_type = Column(String(32), nullable=False, default=SOURCE_UPLOAD, index=True)
    # heavy columns, only loaded by get-by-id style lookups
    prompt = Column(Text, nullable=False, default="")
    ref_images = Column(JSON, nullable=False, default=list)
    message_list = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    workspace = relationship("Workspace", back_populates="images")

    def __repr__(self):
        return f"<Image(id={self.id}, object_path={self.object_path})>"

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid_utils
import uuid


def generate_uuid7():
    """Generate UUIDv7 and convert to standard Python UUID"""
    uuid7_obj = uuid_utils.uuid7()
    return uuid.UUID(str(uuid7_obj))

Base = declarative_base()


class ArtworkMedia(Base):
    __tablename__ = 'artwork_media'

    id = Column(Uuid(as_uuid=True), primary_key=True, default=generate_uuid7)
    # The artworks table is owned by the site schema, not by this tool.
    artwork_id = Column(Integer, nullable=False, index=True)
    kind = Column(String(16), nullable=False)
    image_url = Column(String(2000), nullable=False)
    video_url = Column(String(2000))
    sort_order = Column(Integer, nullable=False, default=0)
    valid = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_artwork_media_artwork_id_sort', 'artwork_id', 'sort_order'),
    )

    def __repr__(self):
        return (
            f"<ArtworkMedia(id={self.id}, artwork_id={self.artwork_id}, kind='{self.kind}', "
            f"sort_order={self.sort_order})>"
        )

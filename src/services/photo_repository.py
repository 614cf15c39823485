"""Photo database operations"""

import logging
from typing import Dict, Optional
from uuid import UUID
from sqlalchemy import func
from sqlalchemy.orm import Session

from src.models.photo import Photo, PhotoStatus

logger = logging.getLogger(__name__)


class PhotoRepository:
    """Static helpers over the photos table; callers own the transaction"""

    @staticmethod
    def save(db: Session, photo: Photo) -> Photo:
        """Add or update a photo and flush so version conflicts surface here"""
        db.add(photo)
        db.flush()
        return photo

    @staticmethod
    def get(db: Session, photo_id: UUID) -> Optional[Photo]:
        return db.query(Photo).filter(Photo.id == photo_id).first()

    @staticmethod
    def get_by_checksum(db: Session, checksum: str) -> Optional[Photo]:
        return db.query(Photo).filter(Photo.checksum == checksum).first()

    @staticmethod
    def delete(db: Session, photo: Photo) -> None:
        db.delete(photo)
        db.flush()

    @staticmethod
    def list_by_user(db: Session, user_id: str) -> list[Photo]:
        return (
            db.query(Photo)
            .filter(Photo.user_id == user_id)
            .order_by(Photo.created_at.desc())
            .all()
        )

    @staticmethod
    def list_by_status(db: Session, status: PhotoStatus) -> list[Photo]:
        return (
            db.query(Photo)
            .filter(Photo.status == status)
            .order_by(Photo.created_at.desc())
            .all()
        )

    @staticmethod
    def list_by_user_and_status(db: Session, user_id: str, status: PhotoStatus) -> list[Photo]:
        return (
            db.query(Photo)
            .filter(Photo.user_id == user_id, Photo.status == status)
            .order_by(Photo.created_at.desc())
            .all()
        )

    @staticmethod
    def count_by_status(db: Session, status: PhotoStatus) -> int:
        return db.query(func.count(Photo.id)).filter(Photo.status == status).scalar() or 0

    @staticmethod
    def count_all_by_status(db: Session) -> Dict[str, int]:
        rows = db.query(Photo.status, func.count(Photo.id)).group_by(Photo.status).all()
        counts = {status.value: 0 for status in PhotoStatus}
        for status, count in rows:
            counts[PhotoStatus(status).value] = count
        return counts

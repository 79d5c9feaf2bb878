"""
Resume file storage in MongoDB.

Relational rows keep only `resume_file_id`; the file bytes and metadata
live in the `resume_files` collection.
"""

import uuid
from typing import Optional

from bson.binary import Binary
from pymongo.collection import Collection

from irefair.db.mongodb import COLLECTIONS, get_collection
from irefair.utils.timezone import utc_now


class ResumeStore:
    """
    Handles resume document storage.
    These are the original uploaded resume files.
    """

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["resumes"])

    def insert(self, owner_id: str, content: bytes, filename: str, content_type: str, kind: str = "applicant") -> str:
        """
        Store a resume file.

        Args:
            owner_id: iRAIN or application id the file belongs to
            content: raw file bytes
            filename: original filename
            content_type: MIME type reported by the upload
            kind: "applicant" (profile CV) or "application"

        Returns:
            Generated file id (store this on the relational row)
        """
        file_id = uuid.uuid4().hex
        self.collection.insert_one({
            "file_id": file_id,
            "owner_id": owner_id,
            "kind": kind,
            "filename": filename,
            "content_type": content_type or "application/octet-stream",
            "size": len(content),
            "content": Binary(content),
            "uploaded_at": utc_now(),
        })
        return file_id

    def get(self, file_id: str) -> Optional[dict]:
        if not file_id:
            return None
        doc = self.collection.find_one({"file_id": file_id}, {"_id": 0})
        if doc and doc.get("content") is not None:
            doc["content"] = bytes(doc["content"])
        return doc

    def delete(self, file_id: str) -> bool:
        if not file_id:
            return False
        result = self.collection.delete_one({"file_id": file_id})
        return result.deleted_count > 0

    def delete_by_owner(self, owner_id: str) -> int:
        result = self.collection.delete_many({"owner_id": owner_id})
        return result.deleted_count


_resume_store: Optional[ResumeStore] = None


def get_resume_store() -> ResumeStore:
    global _resume_store
    if _resume_store is None:
        _resume_store = ResumeStore()
    return _resume_store


def reset_resume_store() -> None:
    global _resume_store
    _resume_store = None

"""
Document store — keyed JSON documents on top of the `documents` table.

Each public method opens its own session, commits, and closes it, so the
store is safe to share between Flask requests and RQ jobs. Writes publish a
change notification on a per-key Redis channel when a publisher is set.
"""
import copy
import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.attributes import flag_modified

from scout.models.document import Document

logger = logging.getLogger('services.store')


class DocumentExistsError(Exception):
    def __init__(self, doc_type: str, doc_id: str):
        super().__init__(f"{doc_type}/{doc_id} already exists")
        self.doc_type = doc_type
        self.doc_id = doc_id


class DocumentNotFoundError(Exception):
    def __init__(self, doc_type: str, doc_id: str):
        super().__init__(f"{doc_type}/{doc_id} not found")
        self.doc_type = doc_type
        self.doc_id = doc_id


def channel_name(doc_type: str, doc_id: str) -> str:
    return f"doc:{doc_type}:{doc_id}"


class DocumentStore:
    """
    get / create / update (top-level merge) / put / delete by key, a bounded
    scan, an atomic numeric increment and a single-key change subscription.
    """

    def __init__(self, session_factory: Callable, publisher=None):
        self._session_factory = session_factory
        self._publisher = publisher

    # ── Reads ───────────────────────────────────────────────────────────────

    def get(self, doc_type: str, doc_id: str) -> Optional[Dict]:
        session = self._session_factory()
        try:
            doc = self._fetch(session, doc_type, doc_id)
            return copy.deepcopy(doc.data) if doc else None
        finally:
            session.close()

    def scan(self, limit: Optional[int] = None, doc_type: Optional[str] = None) -> List[Tuple[str, str, Dict]]:
        """Return up to `limit` (doc_type, doc_id, data) tuples in insertion order."""
        session = self._session_factory()
        try:
            stmt = select(Document).order_by(Document.id)
            if doc_type:
                stmt = stmt.where(Document.doc_type == doc_type)
            if limit:
                stmt = stmt.limit(limit)
            return [
                (doc.doc_type, doc.doc_id, copy.deepcopy(doc.data))
                for doc in session.execute(stmt).scalars()
            ]
        finally:
            session.close()

    def find(self, doc_type: str, limit: Optional[int] = None, **equals) -> List[Dict]:
        """Documents of `doc_type` whose top-level fields equal every keyword given."""
        results = []
        for _, _, data in self.scan(doc_type=doc_type):
            if all(data.get(key) == value for key, value in equals.items()):
                results.append(data)
                if limit and len(results) >= limit:
                    break
        return results

    # ── Writes ──────────────────────────────────────────────────────────────

    def create(self, doc_type: str, doc_id: str, data: Dict) -> Dict:
        session = self._session_factory()
        try:
            if self._fetch(session, doc_type, doc_id) is not None:
                raise DocumentExistsError(doc_type, doc_id)
            session.add(Document(doc_type=doc_type, doc_id=doc_id, data=copy.deepcopy(data)))
            session.commit()
        except IntegrityError:
            session.rollback()
            raise DocumentExistsError(doc_type, doc_id)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(doc_type, doc_id, 'created')
        return data

    def update(self, doc_type: str, doc_id: str, patch: Dict) -> Dict:
        """Merge `patch` into the stored document's top-level keys."""
        session = self._session_factory()
        try:
            doc = self._fetch(session, doc_type, doc_id, for_update=True)
            if doc is None:
                raise DocumentNotFoundError(doc_type, doc_id)
            merged = copy.deepcopy(doc.data)
            merged.update(copy.deepcopy(patch))
            doc.data = merged
            flag_modified(doc, 'data')
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(doc_type, doc_id, 'updated')
        return merged

    def put(self, doc_type: str, doc_id: str, data: Dict) -> Dict:
        """Create or wholesale-replace a document."""
        session = self._session_factory()
        try:
            doc = self._fetch(session, doc_type, doc_id, for_update=True)
            if doc is None:
                session.add(Document(doc_type=doc_type, doc_id=doc_id, data=copy.deepcopy(data)))
            else:
                doc.data = copy.deepcopy(data)
                flag_modified(doc, 'data')
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(doc_type, doc_id, 'replaced')
        return data

    def delete(self, doc_type: str, doc_id: str) -> bool:
        session = self._session_factory()
        try:
            doc = self._fetch(session, doc_type, doc_id)
            if doc is None:
                return False
            session.delete(doc)
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(doc_type, doc_id, 'deleted')
        return True

    def upsert(self, doc_type: str, doc_id: str,
               merge: Callable[[Optional[Dict]], Dict]) -> Tuple[Optional[Dict], Dict]:
        """
        Read-merge-write one document under a row lock.

        `merge` receives the stored data (None when absent) and returns the
        new data. Returns (before, after); nothing is written when they are
        equal. A concurrent insert of the same key is retried once as a merge.
        """
        for attempt in range(2):
            session = self._session_factory()
            try:
                doc = self._fetch(session, doc_type, doc_id, for_update=True)
                before = copy.deepcopy(doc.data) if doc is not None else None
                after = merge(copy.deepcopy(before) if before is not None else None)
                if doc is None:
                    session.add(Document(doc_type=doc_type, doc_id=doc_id, data=copy.deepcopy(after)))
                elif after != before:
                    doc.data = copy.deepcopy(after)
                    flag_modified(doc, 'data')
                session.commit()
            except IntegrityError:
                session.rollback()
                if attempt:
                    raise
                continue
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()
            if after != before:
                self._publish(doc_type, doc_id, 'created' if before is None else 'updated')
            return before, after
        raise DocumentExistsError(doc_type, doc_id)

    def increment(self, doc_type: str, doc_id: str, path: str, amount: int = 1) -> Any:
        """
        Atomically add `amount` to the number at dotted `path`.

        The row is locked for the read-modify-write where the backend supports
        it. A missing document is created.
        """
        session = self._session_factory()
        try:
            doc = self._fetch(session, doc_type, doc_id, for_update=True)
            data = copy.deepcopy(doc.data) if doc is not None else {}
            parts = path.split('.')
            node = data
            for part in parts[:-1]:
                if not isinstance(node.get(part), dict):
                    node[part] = {}
                node = node[part]
            value = (node.get(parts[-1]) or 0) + amount
            node[parts[-1]] = value
            if doc is None:
                session.add(Document(doc_type=doc_type, doc_id=doc_id, data=data))
            else:
                doc.data = data
                flag_modified(doc, 'data')
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
        self._publish(doc_type, doc_id, 'updated')
        return value

    # ── Change notifications ────────────────────────────────────────────────

    def subscribe(self, doc_type: str, doc_id: str):
        """Return a Redis PubSub subscribed to changes of one document."""
        if self._publisher is None:
            raise RuntimeError('Document store has no publisher configured')
        pubsub = self._publisher.pubsub(ignore_subscribe_messages=True)
        pubsub.subscribe(channel_name(doc_type, doc_id))
        return pubsub

    def _publish(self, doc_type: str, doc_id: str, event: str):
        if self._publisher is None:
            return
        try:
            self._publisher.publish(
                channel_name(doc_type, doc_id),
                json.dumps({'docType': doc_type, 'id': doc_id, 'event': event}),
            )
        except Exception as e:
            logger.warning("Change notification for %s/%s failed: %s", doc_type, doc_id, e)

    @staticmethod
    def _fetch(session, doc_type: str, doc_id: str, for_update: bool = False) -> Optional[Document]:
        stmt = select(Document).where(Document.doc_type == doc_type, Document.doc_id == doc_id)
        if for_update:
            stmt = stmt.with_for_update()
        return session.execute(stmt).scalar_one_or_none()

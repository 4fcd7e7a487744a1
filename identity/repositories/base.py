from typing import Any, Generic, TypeVar

from sqlalchemy.orm import Session

ModelT = TypeVar("ModelT")


class Repository(Generic[ModelT]):
    """Query object bound to one SQLAlchemy session.

    Writes flush immediately so that statements reach the database in the
    order they were issued inside a unit of work.
    """

    model: type

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, id: Any) -> ModelT | None:
        return self.db.get(self.model, id)

    def create(self, obj: ModelT) -> ModelT:
        self.db.add(obj)
        self.db.flush()
        return obj

    def update(self, obj: ModelT) -> ModelT:
        self.db.add(obj)
        self.db.flush()
        return obj

    def delete(self, obj: ModelT) -> None:
        self.db.delete(obj)
        self.db.flush()

from sqlalchemy import select

from identity.models.person import Person
from identity.models.rfid_card import RFIDCard
from identity.models.staff import Staff
from identity.models.student import Student
from identity.repositories.base import Repository


class PersonRepository(Repository[Person]):
    model = Person

    def find_by_account_id(self, account_id: int) -> Person | None:
        return self.db.query(Person).filter(Person.account_id == account_id).first()

    def find_by_tag_id(self, tag_id: str) -> Person | None:
        return self.db.query(Person).filter(Person.tag_id == tag_id).first()

    def list_all(self) -> list[Person]:
        return self.db.query(Person).order_by(Person.id).all()

    def list_tag_ids(self) -> set[str]:
        rows = self.db.execute(select(Person.tag_id).where(Person.tag_id.is_not(None))).all()
        return {r[0] for r in rows}

    def link_to_account(self, person: Person, account_id: int) -> None:
        person.account_id = account_id
        self.db.flush()

    def unlink_from_account(self, person_id: int) -> None:
        # No error when the person has no account (or does not exist)
        self.db.query(Person).filter(Person.id == person_id).update(
            {Person.account_id: None}, synchronize_session="fetch"
        )
        self.db.flush()

    def link_to_rfid_card(self, person: Person, tag_id: str) -> None:
        person.tag_id = tag_id
        self.db.flush()

    def unlink_from_rfid_card(self, person_id: int) -> None:
        self.db.query(Person).filter(Person.id == person_id).update(
            {Person.tag_id: None}, synchronize_session="fetch"
        )
        self.db.flush()


class RFIDCardRepository(Repository[RFIDCard]):
    model = RFIDCard

    def list_active(self) -> list[RFIDCard]:
        return (
            self.db.query(RFIDCard)
            .filter(RFIDCard.active == True)  # noqa: E712
            .order_by(RFIDCard.id)
            .all()
        )


class StaffRepository(Repository[Staff]):
    model = Staff

    def find_by_person_id(self, person_id: int) -> Staff | None:
        return self.db.query(Staff).filter(Staff.person_id == person_id).first()


class StudentRepository(Repository[Student]):
    model = Student

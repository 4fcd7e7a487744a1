"""Binding of persons to login accounts and RFID tags."""

import logging

from identity.core.exceptions import (
    AccountNotFoundError,
    AlreadyLinkedError,
    NotFoundError,
    PersonNotFoundError,
    ValidationFailedError,
    operation,
)
from identity.db.unit_of_work import UnitOfWork
from identity.models.person import Person
from identity.models.rfid_card import RFIDCard, normalize_tag_code

logger = logging.getLogger(__name__)


class CredentialLinker:
    """Links and unlinks accounts and RFID tags on persons.

    A person holds at most one account and one tag; a tag presented for a new
    person is transferred away from its previous holder.
    """

    def __init__(self, uow: UnitOfWork):
        self.uow = uow

    @operation("get person")
    def get_person(self, person_id: int) -> Person:
        person = self.uow.persons.find_by_id(person_id)
        if person is None:
            raise PersonNotFoundError()
        return person

    @operation("get full profile")
    def get_full_profile(self, person_id: int) -> Person:
        """Person with account and RFID card resolved."""
        person = self.get_person(person_id)
        if person.account_id is not None and person.account is None:
            raise AccountNotFoundError()
        if person.tag_id is not None and person.rfid_card is None:
            raise NotFoundError(f"RFID card {person.tag_id} not found")
        return person

    @operation("find person by tag")
    def find_by_tag(self, tag_code: str) -> Person:
        person = self.uow.persons.find_by_tag_id(normalize_tag_code(tag_code))
        if person is None:
            raise PersonNotFoundError()
        return person

    @operation("find person by account")
    def find_by_account(self, account_id: int) -> Person:
        person = self.uow.persons.find_by_account_id(account_id)
        if person is None:
            raise PersonNotFoundError()
        return person

    @operation("link to account")
    def link_account(self, person_id: int, account_id: int) -> None:
        def _link(uow: UnitOfWork) -> None:
            person = uow.persons.find_by_id(person_id)
            if person is None:
                raise PersonNotFoundError()

            if uow.accounts.find_by_id(account_id) is None:
                raise AccountNotFoundError()

            holder = uow.persons.find_by_account_id(account_id)
            if holder is not None and holder.id != person_id:
                raise AlreadyLinkedError(f"account {account_id} is already linked to another person")

            if person.account_id == account_id:
                return
            uow.persons.link_to_account(person, account_id)
            logger.info(f"Linked account {account_id} to person {person_id}")

        self.uow.run(_link)

    @operation("unlink from account")
    def unlink_account(self, person_id: int) -> None:
        self.uow.run(lambda uow: uow.persons.unlink_from_account(person_id))

    @operation("link to RFID card")
    def link_rfid_tag(self, person_id: int, tag_code: str) -> RFIDCard:
        tag_id = normalize_tag_code(tag_code)
        if not tag_id:
            raise ValidationFailedError("RFID tag code cannot be empty")

        def _link(uow: UnitOfWork) -> RFIDCard:
            person = uow.persons.find_by_id(person_id)
            if person is None:
                raise PersonNotFoundError()

            card = uow.rfid_cards.find_by_id(tag_id)
            if card is None:
                # Blank tags are registered on first use
                card = uow.rfid_cards.create(RFIDCard(id=tag_id, active=True))
                logger.info(f"Registered new RFID card {tag_id}")

            holder = uow.persons.find_by_tag_id(tag_id)
            if holder is not None and holder.id != person_id:
                uow.persons.unlink_from_rfid_card(holder.id)
                logger.info(f"Transferring RFID card {tag_id} from person {holder.id} to person {person_id}")

            if person.tag_id != tag_id:
                uow.persons.link_to_rfid_card(person, tag_id)
            return card

        return self.uow.run(_link)

    @operation("unlink from RFID card")
    def unlink_rfid_tag(self, person_id: int) -> None:
        self.uow.run(lambda uow: uow.persons.unlink_from_rfid_card(person_id))

    @operation("list available RFID cards")
    def list_available_rfid_cards(self) -> list[RFIDCard]:
        assigned = self.uow.persons.list_tag_ids()
        return [card for card in self.uow.rfid_cards.list_active() if card.id not in assigned]

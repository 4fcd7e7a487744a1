from sqlalchemy import func

from identity.models.account import Account, AccountParent
from identity.repositories.base import Repository


class AccountRepository(Repository[Account]):
    model = Account

    def find_by_email(self, email: str) -> Account | None:
        return self.db.query(Account).filter(func.lower(Account.email) == email.strip().lower()).first()

    def list_all(self) -> list[Account]:
        """All accounts in a stable order (ascending id)."""
        return self.db.query(Account).order_by(Account.id).all()


class AccountParentRepository(Repository[AccountParent]):
    model = AccountParent

    def find_by_email(self, email: str) -> AccountParent | None:
        return (
            self.db.query(AccountParent)
            .filter(func.lower(AccountParent.email) == email.strip().lower())
            .first()
        )

from services.tripcrew.checkin.ledger import CheckInLedger

__all__ = ["CheckInLedger"]

from .creator import TicketCreator
from .models import FILENAME_RE, Ticket, parse_filename, write_ticket
from .store import TicketQueue

__all__ = [
    "FILENAME_RE",
    "Ticket",
    "TicketCreator",
    "TicketQueue",
    "parse_filename",
    "write_ticket",
]

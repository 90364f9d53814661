from wins_column.entities.billing import CreditBalance, CreditLedgerEntry
from wins_column.entities.commits import Commit
from wins_column.entities.emails import EmailSend
from wins_column.entities.jobs import Job, JobDependency
from wins_column.entities.projects import Project

__all__ = [
    "Commit",
    "CreditBalance",
    "CreditLedgerEntry",
    "EmailSend",
    "Job",
    "JobDependency",
    "Project",
]

"""ProposalHQ state layer: ORM tables, engine factory, and repositories."""

__version__ = "0.4.0"

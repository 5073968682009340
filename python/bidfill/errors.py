class BidFillError(Exception):
    """Base class for failures that abort a single template."""


class PackageError(BidFillError):
    """The document package cannot be read or has no primary markup member."""


class ProposalError(BidFillError):
    """The proposal collaborator failed after exhausting its retries."""


class TagRenderError(BidFillError):
    """A template with {{field}} tags could not be rendered."""

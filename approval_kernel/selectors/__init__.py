"""Read-only query selectors for the approval kernel."""

from approval_kernel.selectors.base import BaseSelector
from approval_kernel.selectors.request_selector import RequestSelector, RequestWithStages

__all__ = ["BaseSelector", "RequestSelector", "RequestWithStages"]

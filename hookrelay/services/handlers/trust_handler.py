"""Trust-validation handler.

Forces certificate/trust evaluation entry points to succeed. The original
validator is never called; every attempt is logged and reported as a
``cert_bypass`` event. Independent pinning checks need one target each;
any that stay unhooked keep validating normally.
"""

import logging

from hookrelay.models.hooks import CallContext, HookFamily
from hookrelay.services.handlers.base_handler import BaseHandler

logger = logging.getLogger(__name__)


class TrustValidationHandler(BaseHandler):
    """Handler for ``observe-and-force-result`` trust evaluation hooks."""

    families = (HookFamily.TRUST_VALIDATION,)

    def on_enter(self, context: CallContext) -> None:
        forced = self.target.forced_result
        host = self.argument(context, "host")
        evaluation_context = self.argument(context, "context")
        logger.info(
            f"Trust evaluation intercepted at {context.qualname}"
            f"{f' for {host}' if host else ''}; forcing {forced!r}"
        )
        self.emit(self.normalizer.cert_bypass(
            source=self.name,
            mechanism=self.target.mechanism or self.name,
            symbol=context.qualname,
            context=host if host is not None else evaluation_context,
            forced_result=forced,
        ))
        context.force_result(forced)

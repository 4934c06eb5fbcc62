from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - import cycles avoided at runtime
    from eta_exporter.config import Config


@dataclass(frozen=True)
class EngineSettings:
    portal_url: str = "https://invoicing.eta.gov.eg"
    documents_path: str = "/documents"
    detail_path_template: str = "/documents/{invoice_id}"
    load_timeout_ms: int = 20_000
    detail_timeout_ms: int = 30_000
    settle_delay_ms: int = 1_000
    poll_interval_ms: int = 500
    rescan_quiet_ms: int = 800
    attempt_slack: int = 10

    @classmethod
    def from_config(cls, app_config: Config) -> EngineSettings:
        return cls(
            portal_url=app_config.portal_url,
            documents_path=app_config.documents_path,
            detail_path_template=app_config.detail_path_template,
            load_timeout_ms=app_config.load_timeout_ms,
            detail_timeout_ms=app_config.detail_timeout_ms,
            settle_delay_ms=app_config.settle_delay_ms,
            rescan_quiet_ms=app_config.rescan_quiet_ms,
        )

    def detail_url(self, invoice_id: str) -> str:
        return self.portal_url.rstrip("/") + self.detail_path_template.format(invoice_id=invoice_id)

    def share_link(self, electronic_number: str, submission_id: str = "") -> str:
        if not electronic_number:
            return ""
        base = f"{self.portal_url.rstrip('/')}/documents/{electronic_number}"
        if submission_id:
            return f"{base}/share/{submission_id}"
        return base

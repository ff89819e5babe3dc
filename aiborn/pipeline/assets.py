from dataclasses import dataclass


@dataclass(frozen=True)
class BonusAsset:
    key: str
    display_name: str
    description: str
    filename: str  # on disk under ASSETS_DIR
    mime_type: str

    @property
    def extension(self) -> str:
        return self.filename.rsplit(".", 1)[-1]

    @property
    def download_name(self) -> str:
        return f"{self.key}.{self.extension}"


FULL_PACK = "full-bonus-pack"

BONUS_ASSETS: dict[str, BonusAsset] = {
    a.key: a
    for a in (
        BonusAsset(
            "agent-charter-pack",
            "Agent Charter Pack",
            "Complete VP-agent templates and sub-agent hierarchy framework",
            "agent-charter-pack.pdf",
            "application/pdf",
        ),
        BonusAsset(
            "coi-diagnostic",
            "Cognitive Overhead Index (COI) Diagnostic",
            "Interactive spreadsheet tool for measuring institutional drag",
            "cognitive-overhead-index.xlsx",
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        ),
        BonusAsset(
            "vp-agent-templates",
            "VP-Agent Templates",
            "Ready-to-use templates for top-level autonomous agents",
            "vp-agent-templates.pdf",
            "application/pdf",
        ),
        BonusAsset(
            "sub-agent-ladders",
            "Sub-Agent Ladders",
            "Hierarchical agent organization patterns and delegation protocols",
            "sub-agent-ladders.pdf",
            "application/pdf",
        ),
        BonusAsset(
            "escalation-protocols",
            "Escalation & Override Protocols",
            "Human oversight frameworks and emergency intervention patterns",
            "escalation-override-protocols.pdf",
            "application/pdf",
        ),
        BonusAsset(
            "implementation-guide",
            "Implementation Guide",
            "Step-by-step setup and deployment instructions",
            "implementation-guide.pdf",
            "application/pdf",
        ),
        BonusAsset(
            FULL_PACK,
            "Complete Bonus Pack",
            "All bonus materials in a single archive",
            "ai-born-bonus-pack-complete.zip",
            "application/zip",
        ),
    )
}

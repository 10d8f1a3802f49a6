from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, List


# marker name -> pattern. Error text routinely carries user input, so it is screened before prompting.
INJECTION_MARKERS: Dict[str, re.Pattern[str]] = {
    "override_instructions": re.compile(r"(ignore|disregard)\s+(all\s+)?(prior|previous)\s+(instructions|rules)", re.IGNORECASE),
    "fake_system_block": re.compile(r"(BEGIN|END)\s+SYSTEM", re.IGNORECASE),
    "persona_swap": re.compile(r"you\s+are\s+(now\s+)?chatgpt", re.IGNORECASE),
    "exfiltration": re.compile(r"exfiltrat(e|ion)", re.IGNORECASE),
    "prompt_leak": re.compile(r"print\s+your\s+(system\s+)?instructions", re.IGNORECASE),
    "policy_bypass": re.compile(r"do\s+not\s+follow\s+(the\s+)?policy", re.IGNORECASE),
}


@dataclass(frozen=True)
class InjectionScreen:
    markers: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.markers


def screen_for_injection(*texts: str | None) -> InjectionScreen:
    """
    Names of the injection markers found in any of `texts`, in marker order.
    """
    joined = "\n".join(t for t in texts if t)
    return InjectionScreen(markers=[name for name, pat in INJECTION_MARKERS.items() if pat.search(joined)])

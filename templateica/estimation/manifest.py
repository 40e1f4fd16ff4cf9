"""
Run summary for template estimation.

Records which subjects went into a template, which were excluded and why,
how the location mask changed, and where the outputs were written.
"""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from templateica import __version__
from templateica.estimation.estimator import TemplateResult


@dataclass
class EstimationManifest:
    """
    Summary of one template estimation run.

    Tracks:
    - Inputs and settings
    - Subjects used and excluded
    - Location mask changes
    - Output locations
    """
    modality: str
    group_map: str
    inds: List[int]
    scale: bool
    retest: bool

    n_subjects_total: int
    n_subjects_used: int
    subjects: List[str] = field(default_factory=list)
    excluded_subjects: List[Dict[str, Any]] = field(default_factory=list)

    n_locations_initial: int = 0
    n_locations_final: int = 0
    n_signal_variance_clipped: int = 0
    warnings: List[str] = field(default_factory=list)

    outputs: Dict[str, str] = field(default_factory=dict)

    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    templateica_version: str = __version__

    @classmethod
    def from_result(
        cls,
        result: TemplateResult,
        modality: str,
        group_map: Path,
        subjects: Sequence[str],
        retest: bool = False,
        outputs: Optional[Dict[str, Path]] = None,
    ) -> 'EstimationManifest':
        return cls(
            modality=modality,
            group_map=str(group_map),
            inds=list(result.inds),
            scale=result.scale,
            retest=retest,
            n_subjects_total=result.n_subjects_total,
            n_subjects_used=result.n_subjects,
            subjects=[str(s) for s in subjects],
            excluded_subjects=[
                {'index': e.index + 1, 'label': e.label, 'reason': e.reason}
                for e in result.excluded
            ],
            n_locations_initial=result.n_locations_initial,
            n_locations_final=result.n_locations,
            n_signal_variance_clipped=result.n_clipped,
            warnings=list(result.warnings),
            outputs={k: str(v) for k, v in (outputs or {}).items()},
        )

    @property
    def mask_changed(self) -> bool:
        return self.n_locations_final != self.n_locations_initial

    def subject_table(self) -> pd.DataFrame:
        """One row per subject: 1-based index, label, status and reason."""
        reasons = {e['index']: e['reason'] for e in self.excluded_subjects}
        return pd.DataFrame({
            'index': range(1, len(self.subjects) + 1),
            'subject': self.subjects,
            'status': ['excluded' if i in reasons else 'included'
                       for i in range(1, len(self.subjects) + 1)],
            'reason': [reasons.get(i, '') for i in range(1, len(self.subjects) + 1)],
        })

    def save(self, output_path: Path) -> Path:
        """Save manifest to JSON file."""
        output_path = Path(output_path)
        with open(output_path, 'w') as f:
            json.dump(asdict(self), f, indent=2)
        return output_path

    def save_subject_table(self, output_path: Path) -> Path:
        output_path = Path(output_path)
        self.subject_table().to_csv(output_path, sep='\t', index=False)
        return output_path

    @classmethod
    def load(cls, manifest_path: Path) -> 'EstimationManifest':
        """Load manifest from JSON file."""
        with open(manifest_path, 'r') as f:
            data = json.load(f)
        return cls(**data)

    def summary(self) -> str:
        """Human-readable run summary."""
        lines = [
            f"Template estimation ({self.modality})",
            f"  Group map: {self.group_map}",
            f"  Components: {', '.join(f'IC {q}' for q in self.inds)}",
            f"  Subjects used: {self.n_subjects_used} of {self.n_subjects_total}",
        ]
        for e in self.excluded_subjects:
            lines.append(f"    excluded {e['index']}: {e['label']} ({e['reason']})")
        if self.mask_changed:
            lines.append(
                f"  Mask refined: {self.n_locations_initial} -> {self.n_locations_final} locations"
            )
        else:
            lines.append(f"  Locations: {self.n_locations_final}")
        for kind, path in self.outputs.items():
            lines.append(f"  {kind}: {path}")
        return "\n".join(lines)

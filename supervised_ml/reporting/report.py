# reporting/report.py
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import joblib
import matplotlib
# Non-interactive backend so chapters run on machines without a display
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns

sns.set_theme(style="whitegrid")

logger = logging.getLogger(__name__)


@dataclass
class ChapterResult:
    """Everything a chapter produced"""
    chapter: str
    metrics: Dict[str, Any] = field(default_factory=dict)
    tables: Dict[str, pd.DataFrame] = field(default_factory=dict)
    figures: List[str] = field(default_factory=list)
    narrative: List[str] = field(default_factory=list)


class ChapterReport:
    """
    Console report for one chapter. Everything printed is also kept so it can
    be written to <output_dir>/<chapter>/report.txt at the end of the run.
    """

    def __init__(self, chapter, output_dir, save_models=True):
        self.chapter = chapter
        self.output_dir = Path(output_dir) / chapter
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.save_models = save_models
        self.result = ChapterResult(chapter=chapter)
        self._lines = []

    def _emit(self, text):
        print(text)
        self._lines.append(text)

    def section(self, title):
        self._emit("\n" + "=" * 25 + f" {title.upper()} " + "=" * 25)

    def text(self, *lines):
        for line in lines:
            self._emit(line)

    def narrate(self, *lines):
        """Interpretation in prose; kept separately on the result as well."""
        for line in lines:
            self._emit(line)
            self.result.narrative.append(line)

    def table(self, name, df, show=True):
        self.result.tables[name] = df
        if show:
            self._emit(df.to_string() if isinstance(df, (pd.DataFrame, pd.Series)) else str(df))

    def metric(self, name, value):
        self.result.metrics[name] = value

    def figure(self, fig, filename):
        path = self.output_dir / filename
        fig.tight_layout()
        fig.savefig(path, dpi=120, bbox_inches='tight')
        plt.close(fig)
        self.result.figures.append(str(path))
        self._emit(f"Saved plot: {path}")
        return path

    def save_model(self, model, filename):
        if not self.save_models:
            return None
        path = self.output_dir / filename
        joblib.dump(model, path)
        logger.info(f"Saved fitted model to {path}")
        return path

    def finish(self):
        report_path = self.output_dir / 'report.txt'
        report_path.write_text("\n".join(self._lines) + "\n", encoding='utf-8')
        logger.info(f"✅ Chapter '{self.chapter}' report written to {report_path}")
        return self.result

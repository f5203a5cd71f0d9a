"""
Synthetic Heart Failure Clinical Records Generator

Generates 13-column records shaped like the published heart failure clinical
records table, plus two controlled variants used for end-to-end checks:
a perfectly separable dataset and a pure-noise dataset.
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd
import yaml

from ..config import CSV_COLUMNS, TARGET_COLUMN

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Typical values used when a predictor is held constant
TYPICAL_VALUES = {
    'age': 60.0,
    'anaemia': 0,
    'creatinine_phosphokinase': 250.0,
    'diabetes': 0,
    'ejection_fraction': 38.0,
    'high_blood_pressure': 0,
    'platelets': 262000.0,
    'serum_creatinine': 1.1,
    'serum_sodium': 137.0,
    'sex': 1,
    'smoking': 0,
    'time': 115.0,
}


class HeartFailureDataGenerator:
    """Generate synthetic heart failure clinical records."""

    def __init__(self, seed: int = 42):
        """Initialize the generator with a random seed.

        Args:
            seed: Random seed for reproducibility
        """
        self.seed = seed
        self.rng = np.random.default_rng(seed)

    def generate_records(self, n_records: int) -> pd.DataFrame:
        """Predictor columns only, with marginal distributions close to the clinical cohort."""
        rng = self.rng
        sex = rng.binomial(1, 0.65, n_records)
        # Smoking is far more common among men in the cohort
        smoking = rng.binomial(1, np.where(sex == 1, 0.47, 0.04))

        records = pd.DataFrame({
            'age': np.clip(np.round(rng.normal(60.8, 11.9, n_records)), 40, 95),
            'anaemia': rng.binomial(1, 0.43, n_records),
            'creatinine_phosphokinase': np.clip(np.round(rng.lognormal(np.log(250), 1.0, n_records)), 23, 7861),
            'diabetes': rng.binomial(1, 0.42, n_records),
            'ejection_fraction': np.clip(np.round(rng.normal(38.1, 11.8, n_records)), 14, 80),
            'high_blood_pressure': rng.binomial(1, 0.35, n_records),
            'platelets': np.clip(np.round(rng.normal(263358, 97804, n_records), -2), 25100, 850000),
            'serum_creatinine': np.clip(np.round(rng.lognormal(np.log(1.1), 0.45, n_records), 2), 0.5, 9.4),
            'serum_sodium': np.clip(np.round(rng.normal(136.6, 4.4, n_records)), 113, 148),
            'sex': sex,
            'smoking': smoking,
            'time': rng.integers(4, 286, n_records).astype(float),
        })
        return records

    def generate_target_variable(self, data: pd.DataFrame, event_rate: float = 0.32) -> pd.Series:
        """Risk-driven outcome: the top ``event_rate`` share of a noisy risk score dies."""
        start = time.time()
        logger.info(f"Generating outcome with {event_rate:.1%} event rate")

        risk_df = pd.DataFrame({
            'age_risk': (data['age'] - 40).clip(lower=0) / 55,
            'ef_risk': (45 - data['ejection_fraction']).clip(lower=0) / 30,
            'creatinine_risk': (data['serum_creatinine'] - 1.2).clip(lower=0) / 2,
            'sodium_risk': (135 - data['serum_sodium']).clip(lower=0) / 10,
            'followup_risk': 1 - data['time'] / 285,
            'anaemia_risk': data['anaemia'].astype(float),
            'bp_risk': data['high_blood_pressure'].astype(float),
        }, index=data.index)
        weights = np.array([0.20, 0.25, 0.20, 0.10, 0.45, 0.05, 0.05])
        total_risk = risk_df.values.dot(weights)

        noise = self.rng.normal(0, 0.1, size=len(data))
        final_risk = total_risk + noise

        # pick exact top-N to guarantee the event rate
        n_positive = int(round(len(data) * event_rate))
        target = pd.Series(0, index=data.index, name=TARGET_COLUMN)
        if n_positive <= 0:
            logger.warning("event_rate too small for dataset size, returning all zeros")
            return target
        target.iloc[np.argsort(final_risk)[-n_positive:]] = 1
        logger.info(f"Assigned {int(target.sum())} events in {time.time() - start:.2f}s")
        return target

    def generate_dataset(self, n_records: int = 299, event_rate: float = 0.32) -> pd.DataFrame:
        """Full 13-column dataset in the published column order."""
        logger.info(f"Generating {n_records} heart failure records")
        data = self.generate_records(n_records)
        data[TARGET_COLUMN] = self.generate_target_variable(data, event_rate)
        return data[CSV_COLUMNS]

    def generate_separable_dataset(self,
                                   n_records: int = 100,
                                   feature: str = 'ejection_fraction',
                                   threshold: float = 50.0,
                                   margin: float = 10.0,
                                   width: float = 25.0,
                                   noisy_predictors: bool = False) -> pd.DataFrame:
        """
        Outcome is exactly ``feature > threshold``.

        Half the rows fall in ``[threshold + margin, threshold + margin + width]``
        (outcome 1), the rest in ``[threshold - margin - width, threshold - margin]``
        (outcome 0). Other predictors are held at typical values unless
        ``noisy_predictors`` is set.
        """
        n_positive = n_records // 2
        if noisy_predictors:
            data = self.generate_records(n_records)
        else:
            data = pd.DataFrame({col: np.full(n_records, value) for col, value in TYPICAL_VALUES.items()})

        values = np.concatenate([
            self.rng.uniform(threshold + margin, threshold + margin + width, n_positive),
            self.rng.uniform(threshold - margin - width, threshold - margin, n_records - n_positive),
        ])
        order = self.rng.permutation(n_records)
        data[feature] = np.round(values[order], 1)
        data[TARGET_COLUMN] = (data[feature] > threshold).astype(int)
        return data[CSV_COLUMNS]

    def generate_noise_dataset(self, n_records: int = 299, event_rate: float = 0.32) -> pd.DataFrame:
        """Realistic predictors with an outcome drawn independently of all of them."""
        data = self.generate_records(n_records)
        n_positive = int(round(n_records * event_rate))
        outcome = np.zeros(n_records, dtype=int)
        outcome[:n_positive] = 1
        data[TARGET_COLUMN] = self.rng.permutation(outcome)
        return data[CSV_COLUMNS]


def generate(argv: Optional[list] = None) -> Path:
    """Parse command-line arguments, write the CSV and its summary, return the CSV path."""
    parser = argparse.ArgumentParser(description="Generate synthetic heart failure clinical records")
    parser.add_argument("--num_records", type=int, default=299,
                        help="Number of records to generate")
    parser.add_argument("--output_dir", type=str, default="./data/raw",
                        help="Output directory for generated data")
    parser.add_argument("--event_rate", type=float, default=0.32,
                        help="Share of records with DEATH_EVENT = 1")
    parser.add_argument("--variant", choices=["realistic", "separable", "noise"], default="realistic",
                        help="Outcome mechanism")
    parser.add_argument("--seed", type=int, default=42,
                        help="Random seed")

    args = parser.parse_args(argv)

    output_dir = Path(args.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    generator = HeartFailureDataGenerator(seed=args.seed)
    if args.variant == "separable":
        df = generator.generate_separable_dataset(n_records=args.num_records)
    elif args.variant == "noise":
        df = generator.generate_noise_dataset(n_records=args.num_records, event_rate=args.event_rate)
    else:
        df = generator.generate_dataset(n_records=args.num_records, event_rate=args.event_rate)

    output_path = output_dir / f"heart_failure_{args.variant}.csv"
    df.to_csv(output_path, index=False)
    logger.info(f"Data saved to {output_path}")

    summary = {
        'total_records': len(df),
        'variant': args.variant,
        'event_rate': float(df[TARGET_COLUMN].mean()),
        'features': list(df.columns),
        'seed': generator.seed,
    }
    summary_path = output_dir / "data_summary.yaml"
    with open(summary_path, 'w') as f:
        yaml.dump(summary, f, default_flow_style=False)

    logger.info(f"Summary saved to {summary_path}")
    return output_path


def main(argv: Optional[list] = None) -> int:
    """Main function for command-line usage."""
    generate(argv)
    return 0


if __name__ == "__main__":
    sys.exit(main())

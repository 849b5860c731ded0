"""
Campaign Analyst

Classifier comparison on the bank direct-marketing data set (Moro et al.,
2011): eight scikit-learn classifiers evaluated on one seeded holdout split,
compared by row-normalised confusion matrices and ROC curves, followed by
sequential feature selection and a reduced bagged-tree ensemble.

Subpackages:
- campaign_analyst.utils: loading, encoding, validation, worker pool
- campaign_analyst.ml: model adapters, evaluation, selection, reporting, pipeline
"""

import logging

__version__ = "1.0.0"
__description__ = "Classifier comparison for bank direct-marketing campaigns"

# library code never configures handlers; the entry point does
logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = ["__version__", "__description__"]

#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
CARP convex clustering pipeline.
Reads a delimited data matrix (observations in rows, variables in columns),
computes the CARP regularization path and writes the cluster path, the
per-snapshot path summary, the dendrogram linkage and a fit summary to
an output directory. Ctrl-C stops the ADMM loop early and keeps the partial
path.
"""
import argparse
import logging
import os
import signal
import sys
from logging.handlers import RotatingFileHandler

import numpy as np
import pandas as pd

from carp.core import carp, CARPConfig


def setup_logging(log_file='carp_pipeline.log'):
    """Configures the logging for the pipeline to report on a file and the console."""
    logger = logging.getLogger('carp')
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    log_format = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Console handler for real-time info
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(log_format)

    # Rotating file handler for detailed log report
    file_handler = RotatingFileHandler(log_file, maxBytes=2*1024*1024, backupCount=5)
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(log_format)

    if not logger.handlers:
        logger.addHandler(console_handler)
        logger.addHandler(file_handler)

    return logger


class InterruptFlag:
    """SIGINT handler that asks the ADMM loop to stop at its next checkpoint."""

    def __init__(self):
        self.requested = False

    def __call__(self):
        return self.requested

    def handle(self, signum, frame):
        if self.requested:
            raise KeyboardInterrupt
        self.requested = True


def read_matrix(path, sep=None, index_col=None):
    if sep is None:
        sep = ',' if path.lower().endswith('.csv') else '\t'
    return pd.read_csv(path, sep=sep, index_col=index_col, comment='#')


def path_summary(fit):
    """One row per retained snapshot."""
    path = fit.path
    return pd.DataFrame({
        'iter': np.arange(len(path)),
        'iteration': path.iterations,
        'gamma': path.gamma_path,
        'n_fusions': path.n_fusions,
        'n_clusters': [len(np.unique(row)) for row in fit.clust_path],
    })


def run(args):
    os.makedirs(args.output_root, exist_ok=True)
    logger = setup_logging(os.path.join(args.output_root, 'carp_pipeline.log'))

    logger.info(f"[1/4] Loading data matrix from: {args.input}")
    df = read_matrix(args.input, sep=args.sep, index_col=0 if args.row_names else None)
    logger.info(f"Loaded {df.shape[0]} observations x {df.shape[1]} variables")

    config = CARPConfig(
        X_center=not args.no_center,
        X_scale=args.scale,
        phi=args.phi,
        rho=args.rho,
        k=args.k,
        weight_dist=args.weight_dist,
        max_iter=args.max_iter,
        burn_in=args.burn_in,
        alg_type=args.alg_type,
        t=args.t,
        keep=args.keep,
    )

    logger.info(f"[2/4] Running CARP ({config.alg_type}, t={config.t})")
    flag = InterruptFlag()
    previous = signal.signal(signal.SIGINT, flag.handle)
    try:
        fit = carp(df, config=config, interrupt=flag)
    finally:
        signal.signal(signal.SIGINT, previous)

    logger.info(f"[3/4] Writing results to '{args.output_root}'")
    fit.cluster_path_vis.to_csv(os.path.join(args.output_root, 'cluster_path.tsv'),
                                sep='\t', index=False)
    path_summary(fit).to_csv(os.path.join(args.output_root, 'path_summary.tsv'),
                             sep='\t', index=False)
    if fit.linkage is not None:
        pd.DataFrame(fit.linkage, columns=['left', 'right', 'gamma', 'size']).to_csv(
            os.path.join(args.output_root, 'linkage.tsv'), sep='\t', index=False)
    with open(os.path.join(args.output_root, 'summary.txt'), 'w') as f:
        f.write(str(fit) + "\n")

    logger.info("[4/4] Done.")
    return fit


def build_parser():
    parser = argparse.ArgumentParser(description='CARP convex clustering pipeline')
    parser.add_argument('--input', required=True,
                        help="Delimited data matrix, observations in rows")
    parser.add_argument('--output_root', default='output')
    parser.add_argument('--sep', default=None,
                        help="Field separator (default: ',' for .csv, tab otherwise)")
    parser.add_argument('--row_names', action='store_true',
                        help="First column holds observation labels")
    parser.add_argument('--alg_type', default='carp', choices=['carp', 'carpl1'])
    parser.add_argument('--t', type=float, default=1.05,
                        help="Multiplicative step for the fusion penalty")
    parser.add_argument('--rho', type=float, default=1.0)
    parser.add_argument('--phi', type=float, default=None,
                        help="RBF kernel scale (default: chosen from the data)")
    parser.add_argument('--k', type=int, default=None,
                        help="Nearest neighbours kept in the weight graph")
    parser.add_argument('--weight_dist', default='euclidean')
    parser.add_argument('--max_iter', type=int, default=10000)
    parser.add_argument('--burn_in', type=int, default=50)
    parser.add_argument('--keep', type=int, default=1)
    parser.add_argument('--no_center', action='store_true')
    parser.add_argument('--scale', action='store_true')
    return parser


if __name__ == '__main__':
    args = build_parser().parse_args()

    if not os.path.isfile(args.input):
        print(f"Error: input file not found: {args.input!r}")
        sys.exit(1)
    run(args)

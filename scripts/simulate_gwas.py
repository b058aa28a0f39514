"""Simulate GWAS summary statistics from the endophenotype model.

Writes one GWAS file per trait, an ids file, the true params and a
configuration file ready for `mocasa train` and `mocasa classify`.
"""
import argparse
import os

import numpy as np

from mocasa.matrix import Matrix
from mocasa.params import Params, write_params_to_file
from mocasa.simulate import simulate_betas, write_config, write_gwas_files


def parse_args():
    p = argparse.ArgumentParser(description="Simulate GWAS summary statistics for the endophenotype model")
    p.add_argument("--out-dir", required=True, help="Directory for all generated files")
    p.add_argument("--n-variants", type=int, default=500, help="Number of variants")
    p.add_argument("--betas", default="2,3", help="Comma-separated loadings, one per trait")
    p.add_argument("--sigmas", default="0.5,0.5", help="Comma-separated residual std devs, one per trait")
    p.add_argument("--mu", type=float, default=0.0, help="Endophenotype mean")
    p.add_argument("--tau", type=float, default=1.0, help="Endophenotype std dev")
    p.add_argument("--se", type=float, default=0.1, help="Standard error of every observed beta")
    p.add_argument("--missing", type=float, default=0.0, help="Fraction of trait values left out (classification only)")
    p.add_argument("--seed", type=int, default=None, help="Random seed")
    return p.parse_args()


def main():
    args = parse_args()
    loadings = [float(x) for x in args.betas.split(",")]
    sigmas = [float(x) for x in args.sigmas.split(",")]
    if len(loadings) != len(sigmas):
        raise SystemExit("--betas and --sigmas need the same number of values")
    trait_names = [f"trait{i + 1}" for i in range(len(loadings))]
    params = Params(trait_names, [args.mu], [args.tau], Matrix(1, len(loadings), loadings), sigmas)
    rng = np.random.default_rng(args.seed)
    sim = simulate_betas(params, args.n_variants, args.se, rng)
    var_ids = [f"var{i + 1}" for i in range(args.n_variants)]
    missing = rng.random(sim["betas"].shape) < args.missing if args.missing > 0 else None

    os.makedirs(args.out_dir, exist_ok=True)
    gwas_paths = write_gwas_files(args.out_dir, trait_names, var_ids, sim["betas"], sim["ses"], missing=missing)
    ids_file = os.path.join(args.out_dir, "ids.txt")
    train_ids = var_ids if missing is None else [v for v, m in zip(var_ids, missing.any(axis=1)) if not m]
    with open(ids_file, "w") as fh:
        fh.write("\n".join(train_ids) + "\n")
    write_params_to_file(params, os.path.join(args.out_dir, "params_true.json"))
    write_config(os.path.join(args.out_dir, "config.toml"), gwas_paths, trait_names, args.out_dir, ids_file,
                 seed=args.seed, params_override={"mu": args.mu, "tau": args.tau})
    print(f"[info] Wrote {len(gwas_paths)} GWAS files, ids and config to {args.out_dir}")


if __name__ == "__main__":
    main()

import os
import argparse
from datetime import datetime


def parse_alpha(value: str):
    """Parse a comma separated list of allocation strategies"""
    try:
        alpha = [float(v) for v in value.split(",") if v.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid alpha list: '{value}'")
    if not alpha:
        raise argparse.ArgumentTypeError("alpha list must not be empty")
    return alpha


def main():
    """Main execution function"""
    parser = argparse.ArgumentParser(
        description="Cluster bootstrap of IPW potential outcome estimators under interference"
    )

    # Configuration name (optional)
    parser.add_argument(
        "--config",
        type=str,
        choices=["default", "quick"],
        default="default",
        help="Configuration name (default)",
    )
    parser.add_argument(
        "--ps",
        type=str,
        choices=["true", "est"],
        default="true",
        help="Known (true) or estimated (est) propensity score",
    )
    parser.add_argument(
        "--no_random_effect",
        action="store_true",
        help="Estimate a fixed effects propensity score model (ps=est)",
    )
    parser.add_argument(
        "--use_control",
        action="store_true",
        help="Apply the configured optimizer control to the mixed model (ps=est)",
    )
    parser.add_argument(
        "--alpha",
        type=parse_alpha,
        default=[0.3, 0.5, 0.7],
        help="Comma separated allocation strategies (default: 0.3,0.5,0.7)",
    )
    parser.add_argument(
        "--n_bootstrap",
        type=int,
        default=None,
        help="Number of bootstrap samples (overrides the configuration)",
    )
    parser.add_argument(
        "--n_clusters",
        type=int,
        default=None,
        help="Number of simulated clusters (overrides the configuration)",
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument(
        "--n_jobs", type=int, default=None, help="Number of parallel jobs"
    )
    parser.add_argument(
        "--skip_failed",
        action="store_true",
        help="Skip bootstrap samples whose propensity score fit fails",
    )
    parser.add_argument(
        "--output_dir",
        type=str,
        default=None,
        help="Directory to save the summary table (not saved if omitted)",
    )

    args = parser.parse_args()
    run_simulation_mode(args)


def run_simulation_mode(args):
    """Execute simulation mode"""
    from ipw_interference.settings import get_config, print_config_summary
    from ipw_interference.run import run_bootstrap_experiment, print_bootstrap_summary

    overrides = {}
    if args.n_bootstrap is not None:
        overrides["n_bootstrap"] = args.n_bootstrap
    if args.n_clusters is not None:
        overrides["n_clusters"] = args.n_clusters
    if args.seed is not None:
        overrides["random_seed"] = args.seed
    if args.skip_failed:
        overrides["skip_failed_samples"] = True
    config = get_config(args.config, overrides)

    print("=" * 80)
    print("Cluster Bootstrap of Group IPW Estimators")
    print("=" * 80)
    print_config_summary(config)

    _, result = run_bootstrap_experiment(
        config,
        alpha=args.alpha,
        ps=args.ps,
        with_re=not args.no_random_effect,
        use_control=args.use_control,
        n_jobs=args.n_jobs,
    )
    print_bootstrap_summary(result, config)

    if args.output_dir:
        os.makedirs(args.output_dir, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        summary_path = os.path.join(args.output_dir, f"bootstrap_summary_{timestamp}.csv")
        result.to_frame(config.confidence_level).to_csv(summary_path, index=False)
        print(f"✓ Saved bootstrap summary: {summary_path}")


if __name__ == "__main__":
    main()

"""Triage pipeline phase implementations.

Each phase handles one step of a triage run, from planning through
cross-repository linking, plus the two release-correlation phases.

Available Phases:
    - PlanBuilder: Select issues and seed the game plan
    - InvestigationCoordinator: Dispatch investigation agents and parse findings
    - ActionExecutor: Turn findings into decisions and apply them idempotently
    - Verifier: Re-read tracker state and check the applied actions
    - Linker: Reference related PRs, issues, changelog and release notes
    - CrossRepoLinker: Comment on related issues in dependent repositories
    - ReleaseCorrelator: Build the pre-release issue manifest
    - ReleaseCloser: Notify and close issues after a release

Every phase except the plan builder inherits from TriagePhase.

Example:
    >>> from repo_triage.engine.phases.verify import Verifier
    >>> verifier = Verifier(tracker, settings, store, repo_root)
    >>> report = await verifier.verify(decisions)
"""

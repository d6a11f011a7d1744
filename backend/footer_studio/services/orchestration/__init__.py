"""Service orchestration layer: coordinates multi-service workflows.

Modules:
- job_tracker: Creates, follows, and completes one footer processing job.
- task_pipeline: Worker side of the trigger; slices the footer and records progress.
- refinement: Render/diff/correct loop with an explicit iteration policy.
"""

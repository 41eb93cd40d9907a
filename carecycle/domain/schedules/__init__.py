"""
Schedules Domain

Lifecycle engine for recurring clinical tasks (tests, injections, procedures):
status transitions, next-due-date arithmetic after a pause, missed occurrence
handling and synchronization of planned executions and reminder notifications.

LAYOUT:
- transition_validator.py: allowed status graph (pure)
- date_calculator.py: date arithmetic (pure)
- repository.py: ScheduleStore, the SQLAlchemy boundary
- data_synchronizer.py: executions/notifications kept in line with status
- lifecycle_service.py: LifecycleManager workflows
- router.py: /schedules endpoints
"""

"""
Job execution package.

- payloads: typed job payloads (tagged union on job_type)
- registry: job type → handler registry
- handlers: handlers for every job type
- worker: worker pool draining the queue
- scheduler: batch run orchestration
"""

# Background jobs

"""Development pipeline orchestration: records, collaborators and the step machine."""

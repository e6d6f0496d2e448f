"""External collaborators: describer, grouping classifier, visual comparator."""

"""Action Agent: recognises approval controls in a target and triggers the admitted ones."""

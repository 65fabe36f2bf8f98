"""Permission resolution and admin role management backend."""

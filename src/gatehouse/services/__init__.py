"""Security services behind the request pipeline."""

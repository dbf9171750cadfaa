# Auth dependencies

collect_ignore = ['setup.py', 'launch']
